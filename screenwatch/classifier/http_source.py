"""HTTP classification source.

Sends captured frames to an age-classification inference service and
parses its JSON answer into a RawPrediction. The service can answer either
with a resolved label:

    {"label": "4to6", "confidence": 91.5}

or with the raw softmax output of the model, in label-index order:

    {"probabilities": [0.01, 0.92, 0.03, 0.02, 0.01, 0.01]}
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from screenwatch.exceptions import ClassificationError
from screenwatch.models import Frame, RawPrediction

logger = logging.getLogger(__name__)

# Output index -> label, matching the model's training order
LABEL_MAP = ["1to3", "4to6", "7to9", "10to12", "13to15", "adults"]


@dataclass
class HttpClassifierConfig:
    """Configuration for the HTTP classification source."""

    url: str
    health_url: Optional[str] = None
    timeout_seconds: float = 10.0


def parse_prediction(data: Any) -> RawPrediction:
    """Turn an inference service response body into a RawPrediction.

    Raises:
        ClassificationError: If the body has neither a label nor probabilities
    """
    if not isinstance(data, dict):
        raise ClassificationError(f"Unexpected response type: {type(data).__name__}")

    if "label" in data:
        return RawPrediction(label=str(data["label"]), confidence=data.get("confidence", 0.0))

    probabilities = data.get("probabilities")
    if isinstance(probabilities, list) and len(probabilities) == len(LABEL_MAP):
        try:
            scores = [float(p) for p in probabilities]
        except (TypeError, ValueError) as e:
            raise ClassificationError(f"Non-numeric probabilities: {probabilities}") from e
        best = max(range(len(scores)), key=lambda i: scores[i])
        return RawPrediction(label=LABEL_MAP[best], confidence=scores[best] * 100)

    raise ClassificationError("Response has neither 'label' nor 'probabilities'")


class HttpClassificationSource:
    """Async client for a remote age classifier."""

    def __init__(
        self,
        config: HttpClassifierConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self._client = client
        self._ready = False

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def load(self) -> bool:
        """Probe the service and mark the source ready if it answers."""
        if not self.config.health_url:
            self._ready = True
            return True

        try:
            client = await self._get_client()
            resp = await client.get(self.config.health_url)
            self._ready = resp.status_code == 200
            if self._ready:
                logger.info(f"Classifier ready at {self.config.url}")
            else:
                logger.warning(f"Classifier health check failed: {resp.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Classifier not reachable: {e}")
            self._ready = False

        return self._ready

    def is_ready(self) -> bool:
        return self._ready

    async def classify(self, frame: Frame) -> RawPrediction:
        """Post a frame to the inference service."""
        client = await self._get_client()
        try:
            resp = await client.post(
                self.config.url,
                content=frame.data,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.TimeoutException as e:
            raise ClassificationError("Classifier timeout") from e
        except httpx.HTTPError as e:
            raise ClassificationError(f"Classifier request failed: {e}") from e

        if resp.status_code != 200:
            raise ClassificationError(f"Classifier returned {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ClassificationError("Classifier returned invalid JSON") from e

        prediction = parse_prediction(data)
        logger.debug(f"Prediction: {prediction.label} ({prediction.confidence})")
        return prediction
