"""Age classification: source adapters and the filtering gateway."""

from screenwatch.classifier.gateway import (
    ClassificationSource,
    ClassifierGateway,
    DEFAULT_CONFIDENCE_THRESHOLD,
)
from screenwatch.classifier.http_source import (
    HttpClassificationSource,
    HttpClassifierConfig,
)

__all__ = [
    "ClassificationSource",
    "ClassifierGateway",
    "DEFAULT_CONFIDENCE_THRESHOLD",
    "HttpClassificationSource",
    "HttpClassifierConfig",
]
