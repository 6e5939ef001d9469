"""Client for the HAID vision and speech service."""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Any, Dict

import httpx

from lifedigest.errors import VendorError, VendorNotConfigured

LOGGER = logging.getLogger(__name__)

VENDOR = "haid"

OCR_MODEL = "deepseek-ai/DeepSeek-OCR"
SAM_LIBRARY = "facebookresearch/sam3"
ASR_MODEL = "large-v3"
MARKDOWN_LIBRARY = "microsoft/markitdown"


def encode_file(path: Path) -> str:
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


class HaidClient:
    """Async wrapper over the HAID ``/api/*`` endpoints.

    Every call posts a base64 payload and returns the decoded JSON body.
    Responses carrying an ``error`` field are raised as `VendorError`.
    """

    def __init__(
        self,
        base_url: str | None,
        *,
        api_key: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def _post(self, endpoint: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self.configured:
            raise VendorNotConfigured(VENDOR)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.post(f"/api/{endpoint}", json=body, headers=headers)
            except httpx.HTTPError as exc:
                raise VendorError(VENDOR, f"{endpoint}: {exc}") from exc

        if response.status_code >= 400:
            raise VendorError(
                VENDOR, f"{endpoint}: {response.text[:500]}", status_code=response.status_code
            )
        data = response.json()
        if isinstance(data, dict) and data.get("error"):
            raise VendorError(VENDOR, f"{endpoint}: {data['error']}")
        return data

    async def doc_to_markdown(self, path: Path) -> str:
        data = await self._post(
            "doc-to-markdown",
            {"file": encode_file(path), "filename": Path(path).name, "lib": MARKDOWN_LIBRARY},
        )
        return data.get("markdown") or ""

    async def image_ocr(self, path: Path, *, output_format: str = "text") -> str:
        data = await self._post(
            "image-ocr",
            {"image": encode_file(path), "model": OCR_MODEL, "output_format": output_format},
        )
        return data.get("text") or ""

    async def image_captioning(self, path: Path) -> str:
        data = await self._post(
            "image-captioning",
            {"image": encode_file(path), "model": OCR_MODEL, "prompt": "Describe this image in detail."},
        )
        return data.get("caption") or ""

    async def segment_image(self, path: Path) -> Dict[str, Any]:
        """Run automatic segmentation. Masks carry a pixel ``bbox`` and an ``rle``."""
        return await self._post(
            "sam", {"image": encode_file(path), "prompt": "auto", "lib": SAM_LIBRARY}
        )

    async def speech_recognition(self, path: Path, *, diarization: bool = True) -> Dict[str, Any]:
        return await self._post(
            "automatic-speech-recognition",
            {
                "audio": encode_file(path),
                "model": ASR_MODEL,
                "diarization": diarization,
                "lib": "whisperx",
                "min_speakers": 1,
                "max_speakers": 4,
            },
        )
