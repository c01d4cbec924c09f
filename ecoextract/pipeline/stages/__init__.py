from .base import BaseStage
from .ocr import OCRStage
from .metadata import MetadataStage
from .extraction import ExtractionStage
from .refinement import RefinementStage

__all__ = [
    "BaseStage",
    "OCRStage",
    "MetadataStage",
    "ExtractionStage",
    "RefinementStage",
]
