"""
Mistral OCR provider implementation using Mistral AI API.

Uses Mistral's native OCR API on the whole PDF:
- Returns markdown per page with preserved structure
- Detects images with bounding boxes; base64 blobs are dropped so they never
  reach the database or LLM context, annotations are kept
"""

import base64
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from mistralai import Mistral

from ecoextract.infra.errors import ConfigurationError
from .provider import OCRProvider, OCRResult, join_pages


def encode_file(file_path: Path) -> str:
    """Encode file to base64."""
    with open(file_path, "rb") as f:
        return base64.b64encode(f.read()).decode('utf-8')


class MistralOCRProvider(OCRProvider):
    """Mistral OCR provider using Mistral AI API."""

    def __init__(self, api_key: str, model: str = "mistral-ocr-latest", client: Mistral = None):
        if not api_key and client is None:
            raise ConfigurationError("Mistral API key not configured (api_keys.mistral)")

        self.client = client or Mistral(api_key=api_key)
        self.model = model

    @property
    def name(self) -> str:
        return "mistral-ocr"

    def process_document(self, file_path: Path, timeout: Optional[int] = None) -> OCRResult:
        start = time.time()
        pdf_base64 = encode_file(file_path)

        ocr_response = self.client.ocr.process(
            model=self.model,
            document={
                "type": "document_url",
                "document_url": f"data:application/pdf;base64,{pdf_base64}"
            },
            include_image_base64=False,
            timeout_ms=timeout * 1000 if timeout else None,
        )

        if not ocr_response.pages:
            raise ValueError("No pages in OCR response")

        pages: List[str] = []
        images: List[Dict[str, Any]] = []
        for page_num, page_data in enumerate(ocr_response.pages, start=1):
            pages.append(page_data.markdown or "")
            for img in getattr(page_data, 'images', None) or []:
                images.append(_image_without_base64(img, page_num))

        if not any(page.strip() for page in pages):
            raise ValueError("OCR returned no text")
        text = join_pages(pages)

        return OCRResult(
            text=text,
            images=images,
            num_pages=len(pages),
            provider=self.name,
            execution_time_seconds=time.time() - start,
        )


def _image_without_base64(img: Any, page_num: int) -> Dict[str, Any]:
    data = img.model_dump() if hasattr(img, 'model_dump') else dict(img)
    data.pop('image_base64', None)
    data['page'] = page_num
    return data
