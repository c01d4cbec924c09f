from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


PAGE_MARKER = "--- PAGE {page} ---"
PAGE_MARKER_PREFIX = "--- PAGE "


@dataclass
class OCRResult:
    text: str
    images: List[Dict[str, Any]] = field(default_factory=list)
    num_pages: int = 0
    provider: str = ""
    error_log: Optional[str] = None
    execution_time_seconds: float = 0.0


class OCRProvider(ABC):
    """Turns a PDF file into markdown text.

    Implementations raise on failure; the OCR stage records the error as the
    document's status.
    """

    @abstractmethod
    def process_document(self, file_path: Path, timeout: Optional[int] = None) -> OCRResult:
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass


def join_pages(pages: List[str]) -> str:
    """Join page markdown with a marker after each page."""
    parts = []
    for page_num, markdown in enumerate(pages, start=1):
        parts.append(markdown.rstrip())
        parts.append(PAGE_MARKER.format(page=page_num))
    return "\n\n".join(parts)


def split_pages(content: str) -> List[str]:
    """Inverse of join_pages; content without markers is a single page."""
    pages, current = [], []
    for line in (content or "").splitlines():
        stripped = line.strip()
        if stripped.startswith(PAGE_MARKER_PREFIX) and stripped.endswith(" ---"):
            pages.append("\n".join(current).strip())
            current = []
        else:
            current.append(line)
    tail = "\n".join(current).strip()
    if tail:
        pages.append(tail)
    return pages
