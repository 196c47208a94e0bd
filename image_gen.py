# image_gen.py
# Dream image generation + promotional watermarking
#
# Default: gpt-image-1-mini (low quality, 1024x1024), which returns b64 payloads
# that are written to blob storage to get a public URL.
# dall-e-3 returns hosted URLs directly.
# Override via env: IMAGE_MODEL=dall-e-3  IMAGE_SIZE=1024x1792  IMAGE_QUALITY=standard

from __future__ import annotations

import base64
import io
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

import requests
from openai import OpenAI
from PIL import Image, ImageDraw, ImageFont

import config

log = logging.getLogger("image_gen")

# ---------------------
# Watermark layout
# ---------------------

WATERMARK_BOX = (200, 50)
WATERMARK_PADDING = 16
WATERMARK_FONT_SIZE = 24
WATERMARK_OPACITY = 0.4
WATERMARK_BG = (0, 0, 0, 77)           # ~30% black
WATERMARK_BORDER = (255, 255, 255, 77)
WATERMARK_FONT_COLOR = (255, 255, 255)


class OpenAIImageService:
    """
    generate_image(prompt) -> [{"url": str}]

    Raises whatever the SDK raises; callers classify by message.
    """

    def __init__(
        self,
        blob_storage: Any,
        client: Optional[OpenAI] = None,
        *,
        model: Optional[str] = None,
        size: Optional[str] = None,
        quality: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.blob_storage = blob_storage
        self._client = client
        self.model = model or config.IMAGE_MODEL
        self.size = size or config.IMAGE_SIZE
        self.quality = quality or config.IMAGE_QUALITY
        self.timeout_seconds = float(timeout_seconds if timeout_seconds is not None else config.IMAGE_TIMEOUT)

    def _client_or_raise(self) -> OpenAI:
        if self._client is None:
            if not config.OPENAI_API_KEY:
                raise RuntimeError("401 unauthorized: OPENAI_API_KEY is not set")
            self._client = OpenAI(timeout=self.timeout_seconds)
        return self._client

    def generate_image(self, prompt: str) -> List[Dict[str, str]]:
        client = self._client_or_raise()
        log.info("Generating dream image (model=%s, size=%s)", self.model, self.size)

        if self.model == "dall-e-3":
            resp = client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.size,
                quality=self.quality,
                style="vivid",
                response_format="url",
                n=1,
            )
            return [{"url": d.url} for d in (resp.data or []) if getattr(d, "url", None)]

        resp = client.images.generate(
            model=self.model,
            prompt=prompt,
            size=self.size,
            quality=self.quality,
            n=1,
        )
        out: List[Dict[str, str]] = []
        for d in resp.data or []:
            b64_data = getattr(d, "b64_json", None)
            if not b64_data:
                continue
            path = f"dreams/{uuid.uuid4().hex}.png"
            url = self.blob_storage.upload(base64.b64decode(b64_data), path)
            log.info("Saved dream image: %s", url)
            out.append({"url": url})
        return out


# ---------------------
# Watermarking
# ---------------------

def download_image(url: str, *, blob_storage: Any = None, timeout: float = 60.0) -> bytes:
    """Our own blob URLs are read straight from storage; anything else over HTTP."""
    if blob_storage is not None and hasattr(blob_storage, "read_public_url"):
        data = blob_storage.read_public_url(url)
        if data is not None:
            return data
    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.content


def _font(size: int):
    try:
        return ImageFont.truetype("DejaVuSans-Bold.ttf", size)
    except OSError:
        return ImageFont.load_default(size=size)


def watermark_image_bytes(data: bytes, text: str) -> bytes:
    """Draw a boxed `text` label in the bottom-right corner; returns PNG bytes."""
    with Image.open(io.BytesIO(data)) as src:
        base = src.convert("RGBA")

    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)

    w, h = WATERMARK_BOX
    x = max(0, base.width - w - WATERMARK_PADDING)
    y = max(0, base.height - h - WATERMARK_PADDING)
    draw.rectangle([x, y, x + w, y + h], fill=WATERMARK_BG, outline=WATERMARK_BORDER, width=2)

    alpha = int(255 * WATERMARK_OPACITY)
    draw.text(
        (x + w / 2, y + h / 2),
        text,
        font=_font(WATERMARK_FONT_SIZE),
        fill=WATERMARK_FONT_COLOR + (alpha,),
        anchor="mm",
    )

    out = io.BytesIO()
    Image.alpha_composite(base, overlay).convert("RGB").save(out, format="PNG")
    return out.getvalue()


def apply_watermark(image_url: str, blob_storage: Any, *, user_id: str = "", text: Optional[str] = None) -> str:
    """
    Watermark an image and upload the result. Returns the new public URL.
    Raises on any failure; the caller decides whether to keep the original.
    """
    data = download_image(image_url, blob_storage=blob_storage)
    marked = watermark_image_bytes(data, text or config.WATERMARK_TEXT)
    stamp = int(time.time() * 1000)
    path = f"dreams/{user_id}/watermarked-{stamp}.png" if user_id else f"watermarked-dreams/{stamp}.png"
    return blob_storage.upload(marked, path)
