"""Age-group policies and their enforcement."""

from screenwatch.policies.models import (
    AgeGroupPolicy,
    DEFAULT_POLICIES,
    parse_clock,
)
from screenwatch.policies.enforcer import PolicyEnforcer

__all__ = [
    "AgeGroupPolicy",
    "DEFAULT_POLICIES",
    "parse_clock",
    "PolicyEnforcer",
]
