"""Tests for the HTTP classification source."""

import httpx
import pytest

from screenwatch.classifier.http_source import (
    HttpClassificationSource,
    HttpClassifierConfig,
    parse_prediction,
)
from screenwatch.exceptions import ClassificationError
from screenwatch.models import Frame, RawPrediction

URL = "http://classifier.local/classify"
HEALTH_URL = "http://classifier.local/health"
FRAME = Frame(data=b"\xff\xd8jpeg")


def make_source(handler, health_url=None) -> HttpClassificationSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpClassificationSource(HttpClassifierConfig(url=URL, health_url=health_url), client)


class TestParsePrediction:
    def test_label_form(self) -> None:
        assert parse_prediction({"label": "7to9", "confidence": 82.0}) == RawPrediction("7to9", 82.0)

    def test_probabilities_form(self) -> None:
        prediction = parse_prediction({"probabilities": [0.01, 0.02, 0.05, 0.9, 0.01, 0.01]})
        assert prediction.label == "10to12"
        assert prediction.confidence == pytest.approx(90.0)

    @pytest.mark.parametrize("body", [
        [],
        {},
        {"probabilities": [0.5, 0.5]},
        {"probabilities": ["a", "b", "c", "d", "e", "f"]},
    ])
    def test_malformed_bodies(self, body) -> None:
        with pytest.raises(ClassificationError):
            parse_prediction(body)


class TestClassify:
    @pytest.mark.asyncio
    async def test_posts_frame_bytes(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content
            seen["method"] = request.method
            return httpx.Response(200, json={"label": "4to6", "confidence": 91.5})

        source = make_source(handler)
        prediction = await source.classify(FRAME)

        assert prediction == RawPrediction("4to6", 91.5)
        assert seen == {"body": FRAME.data, "method": "POST"}
        await source.close()

    @pytest.mark.asyncio
    async def test_server_error_raises(self) -> None:
        source = make_source(lambda request: httpx.Response(503))
        with pytest.raises(ClassificationError, match="503"):
            await source.classify(FRAME)

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self) -> None:
        source = make_source(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(ClassificationError):
            await source.classify(FRAME)

    @pytest.mark.asyncio
    async def test_connection_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        source = make_source(handler)
        with pytest.raises(ClassificationError):
            await source.classify(FRAME)

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        source = make_source(handler)
        with pytest.raises(ClassificationError, match="timeout"):
            await source.classify(FRAME)


class TestLoad:
    @pytest.mark.asyncio
    async def test_ready_without_health_url(self) -> None:
        source = make_source(lambda request: httpx.Response(500))
        assert source.is_ready() is False
        assert await source.load() is True
        assert source.is_ready() is True

    @pytest.mark.asyncio
    async def test_healthy_service(self) -> None:
        source = make_source(lambda request: httpx.Response(200), health_url=HEALTH_URL)
        assert await source.load() is True

    @pytest.mark.asyncio
    async def test_unhealthy_service(self) -> None:
        source = make_source(lambda request: httpx.Response(503), health_url=HEALTH_URL)
        assert await source.load() is False
        assert source.is_ready() is False

    @pytest.mark.asyncio
    async def test_unreachable_service(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route", request=request)

        source = make_source(handler, health_url=HEALTH_URL)
        assert await source.load() is False
