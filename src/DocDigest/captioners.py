from __future__ import annotations

import base64
import json
import logging
import mimetypes
import re
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import requests

from .config import DigestSettings
from .errors import CaptionError, DigestInputError
from .model import ImageCaption
from .schema import coerce_caption

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.35
FALLBACK_CONTEXT_CHARS = 160

CAPTION_INSTRUCTION = (
    "You are extracting a compact digest for an image in a technical document. "
    "Return only JSON with keys: role, summary, key_points, need_open_image_when, confidence. "
    "Keep summary <= 30 words; key_points 2-5 concise items; confidence 0..1."
)

CAPTION_JSON_SCHEMA: Dict[str, Any] = {
    "name": "image_digest",
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "role": {
                "type": "string",
                "enum": ["diagram", "screenshot", "chart", "photo", "whiteboard", "unknown"],
            },
            "summary": {"type": "string"},
            "key_points": {"type": "array", "items": {"type": "string"}},
            "need_open_image_when": {"type": "array", "items": {"type": "string"}},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        },
        "required": ["role", "summary", "key_points", "need_open_image_when", "confidence"],
    },
    "strict": True,
}


class ImageCaptioner(Protocol):
    """
    Captioning backend. Implementations return an ImageCaption or a plain mapping of
    the same shape; the pipeline validates either form.
    """

    def caption(self, image_path: Path, nearby_context: str, asset_id: str) -> Any:
        ...


class MockImageCaptioner:
    """Deterministic local captioner, also used as the fallback on backend failure."""

    def caption(self, image_path: Path, nearby_context: str, asset_id: str) -> ImageCaption:
        short_context = re.sub(r"\s+", " ", nearby_context[:FALLBACK_CONTEXT_CHARS]).strip()
        if short_context:
            summary = f"Image {asset_id} likely supports nearby content: {short_context}"
        else:
            summary = f"Image {asset_id} extracted from document."
        return ImageCaption(
            role="unknown",
            summary=summary,
            key_points=[
                f"asset_path={image_path}",
                "Replace with multimodal model output in production.",
            ],
            need_open_image_when=["Need exact values, tiny text, or visual layout details."],
            confidence=FALLBACK_CONFIDENCE,
        )


class OpenAIImageCaptioner:
    """
    Multimodal captioner calling an OpenAI-compatible ``/responses`` endpoint.

    The image is sent inline as a base64 data URL together with the asset id and the
    surrounding Markdown; the reply is expected to be the JSON caption object.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-5.2",
        base_url: str = "https://api.openai.com/v1",
        timeout: Optional[float] = 120.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise DigestInputError("OpenAI API key missing for image captioning; set OPENAI_API_KEY")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def caption(self, image_path: Path, nearby_context: str, asset_id: str) -> ImageCaption:
        try:
            image_bytes = Path(image_path).read_bytes()
        except OSError as exc:
            raise CaptionError(f"Unable to read image {image_path}: {exc}", asset_id=asset_id) from exc

        payload = self._build_payload(image_bytes, guess_mime(Path(image_path)), nearby_context, asset_id)
        try:
            response = self.session.post(
                f"{self.base_url}/responses",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise CaptionError(f"Caption request failed: {exc}", asset_id=asset_id) from exc

        if not response.ok:
            raise CaptionError(
                f"Caption request failed: http={response.status_code} model={self.model} body={response.text[:500]}",
                asset_id=asset_id,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise CaptionError(f"Caption response is not JSON: {exc}", asset_id=asset_id) from exc

        raw = str(body.get("output_text") or "").strip() if isinstance(body, dict) else ""
        logger.debug("Caption raw output for %s: %s", asset_id, raw[:200])
        start = raw.find("{")
        end = raw.rfind("}")
        if start < 0 or end <= start:
            raise CaptionError(f"Caption parse failed: non-json output ({raw[:200]})", asset_id=asset_id)
        try:
            parsed = json.loads(raw[start : end + 1])
        except json.JSONDecodeError as exc:
            raise CaptionError(f"Caption parse failed: {exc}", asset_id=asset_id) from exc
        return coerce_caption(parsed, asset_id=asset_id)

    def _build_payload(self, image_bytes: bytes, mime: str, nearby_context: str, asset_id: str) -> Dict[str, Any]:
        data_url = f"data:{mime};base64,{base64.b64encode(image_bytes).decode('ascii')}"
        return {
            "model": self.model,
            "text": {"format": {"type": "json_schema", "json_schema": CAPTION_JSON_SCHEMA}},
            "input": [
                {"role": "system", "content": [{"type": "input_text", "text": CAPTION_INSTRUCTION}]},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "input_text",
                            "text": f"Asset ID: {asset_id}\nNearby markdown context:\n{nearby_context or '(empty)'}",
                        },
                        {"type": "input_image", "image_url": data_url},
                    ],
                },
            ],
        }


def guess_mime(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    return mime or "application/octet-stream"


def build_captioner(settings: DigestSettings) -> ImageCaptioner:
    if settings.provider == "mock":
        return MockImageCaptioner()
    if settings.provider == "openai":
        return OpenAIImageCaptioner(
            api_key=settings.api_key,
            model=settings.model,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
        )
    raise DigestInputError(f"Unknown caption provider: {settings.provider}", {"provider": settings.provider})
