"""Classifier gateway: filters raw age predictions into accepted events.

Wraps the external classification source. Adults, unknown labels and
low-confidence predictions are dropped here so that downstream components
only ever see accepted child classifications.
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Optional, Protocol

from screenwatch.models import AgeGroup, ClassificationEvent, Frame, RawPrediction
from screenwatch.policies.models import AgeGroupPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 75.0


class ClassificationSource(Protocol):
    """External age classifier."""

    def is_ready(self) -> bool:
        """True once the model is loaded and inference can run."""
        ...

    async def classify(self, frame: Frame) -> RawPrediction:
        """Classify a frame. Raises on failure."""
        ...


class ClassifierGateway:
    """Filters classifier output and keeps at most one classification in flight."""

    def __init__(
        self,
        source: Optional[ClassificationSource],
        policies: dict[AgeGroup, AgeGroupPolicy],
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> None:
        """Initialize the gateway.

        Args:
            source: Classification source to wrap, or None when predictions
                are fed in directly (replay)
            policies: Age-group policy table (used for the is_child check)
            confidence_threshold: Minimum confidence (percent) to accept
        """
        self.source = source
        self.policies = policies
        self.confidence_threshold = confidence_threshold
        self._in_flight = asyncio.Lock()
        self._accepted = 0
        self._rejected = 0
        self._failed = 0
        self._dropped = 0

    def is_ready(self) -> bool:
        if self.source is None:
            return False
        try:
            return bool(self.source.is_ready())
        except Exception as e:
            logger.warning(f"Classifier readiness check failed: {e}")
            return False

    @property
    def stats(self) -> dict[str, int]:
        """Return per-outcome sample counters."""
        return {
            "accepted": self._accepted,
            "rejected": self._rejected,
            "failed": self._failed,
            "dropped": self._dropped,
        }

    def accept(
        self,
        prediction: RawPrediction,
        observed_at: datetime,
    ) -> Optional[ClassificationEvent]:
        """Filter a raw prediction.

        Args:
            prediction: Raw classifier output
            observed_at: When the classified frame was observed

        Returns:
            ClassificationEvent for an accepted child prediction, None otherwise
        """
        try:
            age_group = AgeGroup(prediction.label)
        except ValueError:
            logger.debug(f"Unknown age label {prediction.label!r}, ignoring")
            self._rejected += 1
            return None

        try:
            confidence = float(prediction.confidence)
        except (TypeError, ValueError):
            logger.debug(f"Malformed confidence {prediction.confidence!r}, ignoring")
            self._rejected += 1
            return None

        if math.isnan(confidence) or not 0.0 <= confidence <= 100.0:
            logger.debug(f"Confidence {confidence} out of range, ignoring")
            self._rejected += 1
            return None

        policy = self.policies.get(age_group)
        if policy is None or not policy.is_child:
            logger.debug(f"Non-child detection ({age_group.value}), ignoring")
            self._rejected += 1
            return None

        if confidence < self.confidence_threshold:
            logger.debug(
                f"Confidence {confidence:.2f}% below threshold "
                f"{self.confidence_threshold:.0f}%, ignoring"
            )
            self._rejected += 1
            return None

        self._accepted += 1
        logger.debug(f"Child detected: {age_group.value} ({confidence:.2f}%)")
        return ClassificationEvent(
            age_group=age_group,
            confidence=confidence,
            observed_at=observed_at,
        )

    async def classify_frame(
        self,
        frame: Frame,
        observed_at: datetime,
    ) -> Optional[ClassificationEvent]:
        """Classify a frame and filter the result.

        A frame arriving while another one is still being classified is
        dropped. Source failures are logged and treated as a rejection.
        """
        if self.source is None:
            logger.warning("No classification source configured, dropping frame")
            self._failed += 1
            return None

        if self._in_flight.locked():
            logger.debug("Classification in progress, dropping frame")
            self._dropped += 1
            return None

        async with self._in_flight:
            try:
                prediction = await self.source.classify(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Classification failed: {e}")
                self._failed += 1
                return None

        if not isinstance(prediction, RawPrediction):
            logger.warning(f"Classifier returned malformed output: {prediction!r}")
            self._failed += 1
            return None

        return self.accept(prediction, observed_at)
