# wastelink/services/providers.py
import json
from typing import Any, Dict, Optional, Protocol, TypedDict

import google.generativeai as genai
import httpx
import structlog
from google.api_core import exceptions as google_exceptions

from wastelink.core.config import Settings
from wastelink.core.errors import ScoringFailure, UpstreamUnavailable
from wastelink.services.scoring import (
    RawScore, clamp_raw, coerce_number, label_for, normalize_external_score,
)

logger = structlog.get_logger(__name__)

class ScoringProvider(Protocol):
    name: str

    async def score_url(self, image_url: str, waste_type: str, location: str) -> RawScore: ...

    async def score_bytes(self, content: bytes, filename: str, waste_type: str, location: str) -> RawScore: ...


def pick_mime(content_type: Optional[str], filename_or_url: Optional[str]) -> str:
    if content_type and content_type.startswith("image/"):
        return content_type.split(";")[0].strip()
    lower = (filename_or_url or "").lower().split("?")[0]
    if lower.endswith(".png"):
        return "image/png"
    if lower.endswith(".webp"):
        return "image/webp"
    if lower.endswith(".gif"):
        return "image/gif"
    return "image/jpeg"


# ---------- External inference API ----------

class ExternalApiProvider:
    name = "external"

    def __init__(self, endpoint: str, token: Optional[str] = None, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.endpoint = endpoint
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client_kwargs: Dict[str, Any] = {
            "timeout": httpx.Timeout(timeout, connect=5.0),
            "headers": headers,
        }
        if transport is not None:
            self._client_kwargs["transport"] = transport

    async def score_url(self, image_url: str, waste_type: str, location: str) -> RawScore:
        data = await self._post(json={"imageUrl": image_url})
        return self._parse(data)

    async def score_bytes(self, content: bytes, filename: str, waste_type: str, location: str) -> RawScore:
        files = {"file": (filename, content, pick_mime(None, filename))}
        data = await self._post(files=files)
        return self._parse(data)

    async def _post(self, **kwargs) -> Dict[str, Any]:
        if not self.endpoint:
            raise ScoringFailure("Contamination API not configured. Set CONTAMINATION_API_URL.")
        try:
            async with httpx.AsyncClient(**self._client_kwargs) as client:
                r = await client.post(self.endpoint, **kwargs)
        except httpx.TimeoutException as ex:
            raise UpstreamUnavailable("Contamination API timed out") from ex
        except httpx.TransportError as ex:
            raise UpstreamUnavailable(f"Contamination API unreachable: {ex}") from ex

        if r.status_code >= 500:
            raise UpstreamUnavailable(f"Contamination API returned {r.status_code}")
        if r.status_code >= 400:
            raise ScoringFailure(f"Contamination API rejected the request ({r.status_code})")
        try:
            data = r.json()
        except ValueError as ex:
            raise ScoringFailure("Contamination API returned non-JSON body") from ex
        if not isinstance(data, dict):
            raise ScoringFailure("Contamination API returned an unexpected payload")
        return data

    @staticmethod
    def _parse(data: Dict[str, Any]) -> RawScore:
        raw = next((data[k] for k in ("score", "contamination_score", "prediction") if data.get(k) is not None), None)
        n = coerce_number(raw)
        if n is None:
            raise ScoringFailure(f"Contamination API returned no usable score: {raw!r}")
        score = normalize_external_score(n)
        label = label_for(score) or data.get("label") or data.get("class") or "unknown"
        return RawScore(score=score, label=label)


# ---------- Gemini vision model ----------

VISION_PROMPT = """
You are a waste contamination inspector.
Rate visible contamination from 1 (clean) to 10 (severely contaminated).
Consider: visible litter, food/oil stains, liquids/soiling, mixed/non-recyclable materials, and overall surface coverage.
Be strict. Map to label: 1-2=Clean, 3-4=Low, 5-7=Moderate, 8-10=High.
Return ONLY JSON matching the schema."""

class VisionVerdict(TypedDict):
    score: int
    label: str
    rationale: str

def build_gemini_model(api_key: str, model_id: str):
    genai.configure(api_key=api_key)
    return genai.GenerativeModel(
        model_id,
        generation_config=genai.GenerationConfig(
            temperature=0,
            response_mime_type="application/json",
            response_schema=VisionVerdict,
        ),
    )

class VisionModelProvider:
    """Scores with a generative vision model; anything exposing
    ``generate_content_async`` can stand in for the Gemini model."""

    name = "vision"

    def __init__(self, model=None, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._model = model
        self._fetch_kwargs: Dict[str, Any] = {"timeout": httpx.Timeout(timeout, connect=5.0)}
        if transport is not None:
            self._fetch_kwargs["transport"] = transport

    async def score_url(self, image_url: str, waste_type: str, location: str) -> RawScore:
        try:
            async with httpx.AsyncClient(**self._fetch_kwargs) as client:
                r = await client.get(image_url)
                r.raise_for_status()
        except httpx.HTTPStatusError as ex:
            raise UpstreamUnavailable(f"Image fetch returned {ex.response.status_code}") from ex
        except httpx.HTTPError as ex:
            raise UpstreamUnavailable(f"Image fetch failed: {ex}") from ex
        mime = pick_mime(r.headers.get("content-type"), image_url)
        return await self._run(r.content, mime, waste_type, location)

    async def score_bytes(self, content: bytes, filename: str, waste_type: str, location: str) -> RawScore:
        return await self._run(content, pick_mime(None, filename), waste_type, location)

    async def _run(self, content: bytes, mime: str, waste_type: str, location: str) -> RawScore:
        if self._model is None:
            raise ScoringFailure("Vision model not configured. Set GEMINI_API_KEY or CONTAMINATION_PROVIDER=external.")

        prompt = f"{VISION_PROMPT}\nDeclared waste type: {waste_type}. Location: {location}."
        try:
            res = await self._model.generate_content_async([prompt, {"mime_type": mime, "data": content}])
        except google_exceptions.GoogleAPIError as ex:
            raise UpstreamUnavailable(f"Vision model call failed: {ex}") from ex

        try:
            parsed = json.loads(res.text)
        except (ValueError, TypeError) as ex:
            raise ScoringFailure("Failed to parse vision model response") from ex
        if not isinstance(parsed, dict):
            raise ScoringFailure("Vision model response is not an object")

        n = coerce_number(parsed.get("score"))
        if n is None:
            raise ScoringFailure(f"Vision model returned no usable score: {parsed.get('score')!r}")
        score = clamp_raw(n)
        # the model's own label is only trusted when the table has no bucket
        label = label_for(score) or parsed.get("label") or "Moderate"
        return RawScore(score=score, label=label, rationale=parsed.get("rationale") or "")


def build_provider(cfg: Settings) -> ScoringProvider:
    """Explicit choice wins; otherwise prefer the vision model when a key exists."""
    choice = cfg.contamination_provider
    if choice is None:
        choice = "vision" if cfg.gemini_api_key else ("external" if cfg.contamination_api_url else "vision")

    if choice == "external":
        provider = ExternalApiProvider(cfg.contamination_api_url, cfg.contamination_api_token, cfg.scoring_timeout_s)
    else:
        model = build_gemini_model(cfg.gemini_api_key, cfg.gemini_model_id) if cfg.gemini_api_key else None
        provider = VisionModelProvider(model, cfg.scoring_timeout_s)
    logger.info("scoring provider selected", provider=provider.name)
    return provider
