from pathlib import Path
from typing import Any, Dict, Optional

from ecoextract.infra.logger import PipelineLogger
from ecoextract.pipeline.status import StageName, ocr_data_exists

from .base import BaseStage


class OCRStage(BaseStage):
    name = StageName.OCR

    def data_exists(self, document: Dict[str, Any]) -> Optional[bool]:
        return ocr_data_exists(document)

    def run(self, document: Dict[str, Any], logger: PipelineLogger) -> Dict[str, Any]:
        provider = self.context.get_ocr()
        file_path = Path(document["file_path"])
        if not file_path.exists():
            raise FileNotFoundError(f"PDF not found: {file_path}")

        logger.info(f"Performing OCR with {provider.name} on {file_path.name}")
        result = provider.process_document(file_path, timeout=self.config.ocr.timeout)

        if not result.text or not result.text.strip():
            raise ValueError("OCR returned no text")

        self.store.documents.save_ocr(
            document["id"],
            result.text,
            images=result.images,
            provider=result.provider or provider.name,
            log=result.error_log,
        )

        logger.info(
            f"OCR completed: {result.num_pages} pages extracted",
            duration_seconds=round(result.execution_time_seconds, 2),
        )
        return {"pages": result.num_pages, "images": len(result.images)}
