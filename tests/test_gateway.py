"""Tests for the classifier gateway."""

import asyncio

import pytest

from conftest import FakeSource, at, settle
from screenwatch.classifier.gateway import ClassifierGateway
from screenwatch.models import AgeGroup, Frame, RawPrediction
from screenwatch.policies.models import DEFAULT_POLICIES

FRAME = Frame(data=b"jpeg")


def make_gateway(source=None, threshold: float = 75.0) -> ClassifierGateway:
    return ClassifierGateway(source or FakeSource(), dict(DEFAULT_POLICIES), threshold)


class TestAccept:
    def test_child_above_threshold_accepted(self) -> None:
        gateway = make_gateway()
        event = gateway.accept(RawPrediction("7to9", 88.5), at(0))

        assert event is not None
        assert event.age_group == AgeGroup.EARLY_ELEMENTARY
        assert event.confidence == 88.5
        assert event.observed_at == at(0)

    def test_threshold_is_inclusive(self) -> None:
        gateway = make_gateway()
        assert gateway.accept(RawPrediction("4to6", 75.0), at(0)) is not None

    def test_below_threshold_rejected(self) -> None:
        gateway = make_gateway()
        assert gateway.accept(RawPrediction("4to6", 74.9), at(0)) is None

    def test_adults_always_rejected(self) -> None:
        gateway = make_gateway()
        assert gateway.accept(RawPrediction("adults", 99.0), at(0)) is None

    def test_adults_rejected_even_with_zero_threshold(self) -> None:
        gateway = make_gateway(threshold=0.0)
        assert gateway.accept(RawPrediction("adults", 100.0), at(0)) is None

    def test_unknown_label_rejected(self) -> None:
        gateway = make_gateway()
        assert gateway.accept(RawPrediction("16to18", 95.0), at(0)) is None

    @pytest.mark.parametrize("confidence", ["high", None, float("nan"), 150.0, -1.0])
    def test_malformed_confidence_rejected(self, confidence) -> None:
        gateway = make_gateway()
        assert gateway.accept(RawPrediction("4to6", confidence), at(0)) is None

    def test_missing_policy_rejected(self) -> None:
        policies = dict(DEFAULT_POLICIES)
        del policies[AgeGroup.TODDLER]
        gateway = ClassifierGateway(FakeSource(), policies)
        assert gateway.accept(RawPrediction("1to3", 95.0), at(0)) is None

    def test_stats_count_outcomes(self) -> None:
        gateway = make_gateway()
        gateway.accept(RawPrediction("4to6", 90.0), at(0))
        gateway.accept(RawPrediction("4to6", 10.0), at(0))
        gateway.accept(RawPrediction("adults", 99.0), at(0))

        assert gateway.stats["accepted"] == 1
        assert gateway.stats["rejected"] == 2


class TestReadiness:
    def test_ready_delegates_to_source(self) -> None:
        assert make_gateway(FakeSource(ready=True)).is_ready()
        assert not make_gateway(FakeSource(ready=False)).is_ready()

    def test_readiness_error_means_not_ready(self) -> None:
        class Broken(FakeSource):
            def is_ready(self) -> bool:
                raise RuntimeError("model file missing")

        assert not make_gateway(Broken()).is_ready()


class TestClassifyFrame:
    @pytest.mark.asyncio
    async def test_accepted_prediction(self) -> None:
        gateway = make_gateway(FakeSource(RawPrediction("10to12", 91.0)))
        event = await gateway.classify_frame(FRAME, at(1))

        assert event is not None
        assert event.age_group == AgeGroup.LATE_ELEMENTARY
        assert event.observed_at == at(1)

    @pytest.mark.asyncio
    async def test_source_failure_is_a_rejection(self, failing_source: FakeSource) -> None:
        gateway = make_gateway(failing_source)

        assert await gateway.classify_frame(FRAME, at(0)) is None
        assert gateway.stats["failed"] == 1

        # Next sample goes through normally once the source recovers
        failing_source.error = None
        assert await gateway.classify_frame(FRAME, at(1)) is not None

    @pytest.mark.asyncio
    async def test_malformed_output_is_a_rejection(self) -> None:
        class Garbage(FakeSource):
            async def classify(self, frame: Frame):
                return {"label": "4to6"}

        gateway = make_gateway(Garbage())
        assert await gateway.classify_frame(FRAME, at(0)) is None
        assert gateway.stats["failed"] == 1

    @pytest.mark.asyncio
    async def test_overlapping_frame_dropped(self) -> None:
        source = FakeSource()
        source.gate = asyncio.Event()
        gateway = make_gateway(source)

        first = asyncio.create_task(gateway.classify_frame(FRAME, at(0)))
        await settle()

        # Second frame arrives while the first is still in inference
        assert await gateway.classify_frame(FRAME, at(0, 30)) is None
        assert gateway.stats["dropped"] == 1
        assert source.calls == 1

        source.gate.set()
        assert await first is not None


class TestWithoutSource:
    def test_not_ready(self) -> None:
        gateway = ClassifierGateway(None, dict(DEFAULT_POLICIES))
        assert gateway.is_ready() is False

    def test_predictions_still_filtered(self) -> None:
        gateway = ClassifierGateway(None, dict(DEFAULT_POLICIES))
        assert gateway.accept(RawPrediction("4to6", 90.0), at(0)) is not None

    @pytest.mark.asyncio
    async def test_frames_counted_as_failed(self) -> None:
        gateway = ClassifierGateway(None, dict(DEFAULT_POLICIES))
        assert await gateway.classify_frame(FRAME, at(0)) is None
        assert gateway.stats["failed"] == 1
