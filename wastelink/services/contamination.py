# wastelink/services/contamination.py
import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Optional

import structlog

from wastelink.core.errors import ScoringFailure, UpstreamUnavailable
from wastelink.core.events import CONTAMINATION_ALERT, Publisher, publish_safely
from wastelink.models.pickup import ImageRef
from wastelink.services.providers import ScoringProvider
from wastelink.services.scoring import RawScore

logger = structlog.get_logger(__name__)

DEFAULT_ALERT_THRESHOLD = 6

def describe_location(address: Optional[str], lat: Optional[float], lng: Optional[float]) -> str:
    if address:
        return address
    if lat is not None and lng is not None:
        return f"Coordinates: {lat:.4f}, {lng:.4f}"
    return "Location not specified"

class ContaminationPipeline:
    """Scores an image (hosted URL first, raw bytes once as fallback) and
    raises a contamination alert when the raw score reaches the threshold."""

    def __init__(self, provider: ScoringProvider, publisher: Publisher,
                 alert_threshold: int = DEFAULT_ALERT_THRESHOLD, timeout_s: float = 10.0):
        self.provider = provider
        self.publisher = publisher
        self.alert_threshold = alert_threshold
        self.timeout_s = timeout_s

    async def evaluate(self, image: ImageRef, waste_type: str, location: str) -> RawScore:
        result = await self._score_with_fallback(image, waste_type, location)
        logger.info("contamination scored", provider=self.provider.name,
                    score=result.score, label=result.label, waste_type=waste_type)
        await self._maybe_alert(result, waste_type, location, image.secure_url)
        return result

    async def _attempt(self, call: Awaitable[RawScore]) -> RawScore:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_s)
        except asyncio.TimeoutError as ex:
            raise UpstreamUnavailable(f"Scoring timed out after {self.timeout_s}s") from ex

    async def _score_with_fallback(self, image: ImageRef, waste_type: str, location: str) -> RawScore:
        if image.secure_url:
            try:
                return await self._attempt(self.provider.score_url(image.secure_url, waste_type, location))
            except Exception as ex:
                if not image.content:
                    raise ScoringFailure(f"Contamination scoring failed: {ex}") from ex
                logger.warning("URL scoring failed, trying buffer", error=str(ex))

        if not image.content:
            raise ScoringFailure("No image content available for scoring")

        filename = image.filename or image.public_id or "upload.jpg"
        try:
            return await self._attempt(self.provider.score_bytes(image.content, filename, waste_type, location))
        except ScoringFailure:
            raise
        except Exception as ex:
            raise ScoringFailure(f"Contamination scoring failed: {ex}") from ex

    async def _maybe_alert(self, result: RawScore, waste_type: str, location: str, image_url: Optional[str]):
        if result.score < self.alert_threshold:
            return
        logger.warning("contamination alert", score=result.score, label=result.label, location=location)
        await publish_safely(self.publisher, CONTAMINATION_ALERT, {
            "waste_type": waste_type,
            "location": location,
            "score": result.score,
            "label": result.label,
            "detected_at": datetime.now(timezone.utc),
            "image_url": image_url,
        })
