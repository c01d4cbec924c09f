from .provider import OCRProvider, OCRResult, PAGE_MARKER, PAGE_MARKER_PREFIX, join_pages, split_pages
from .mistral import MistralOCRProvider

__all__ = [
    'OCRProvider',
    'OCRResult',
    'PAGE_MARKER',
    'PAGE_MARKER_PREFIX',
    'MistralOCRProvider',
    'join_pages',
    'split_pages',
]
