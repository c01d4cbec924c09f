from typing import Any, Dict, Optional

from ecoextract.infra.logger import PipelineLogger
from ecoextract.pipeline.prompts import limit_to_first_pages, render_template
from ecoextract.pipeline.status import StageName, metadata_data_exists

from .base import BaseStage


# Title pages carry the bibliographic block
METADATA_PAGES = 3


class MetadataStage(BaseStage):
    """Publication metadata from the first pages of the OCR text.

    Schema-agnostic: the same fields are extracted whatever record schema is
    in use. Null values never overwrite stored ones.
    """
    name = StageName.METADATA

    def data_exists(self, document: Dict[str, Any]) -> Optional[bool]:
        return metadata_data_exists(document)

    def response_format(self) -> Dict[str, Any]:
        return {
            "type": "json_schema",
            "json_schema": {
                "name": "publication_metadata",
                "schema": self.context.prompts.metadata_schema,
            },
        }

    def run(self, document: Dict[str, Any], logger: PipelineLogger) -> Dict[str, Any]:
        content = self.require_content(document)
        prompts = self.context.prompts

        context = render_template(
            prompts.metadata_context,
            document_content=limit_to_first_pages(content, METADATA_PAGES),
        )

        result = self.context.get_llm().call(
            prompts.metadata,
            context,
            self.response_format(),
            self.config.models.metadata,
            "metadata",
            timeout=self.config.llm_timeout,
        )

        metadata = result.data
        self.store.documents.save_metadata(
            document["id"],
            metadata,
            model=result.model_used,
            log=result.format_log(),
        )
        if not metadata_data_exists(self.store.documents.get(document["id"])):
            raise ValueError("No title, author or year extracted")

        logger.info(
            f"Metadata extracted: {metadata.get('first_author_lastname') or '<no author>'} "
            f"({metadata.get('publication_year') or 'n.d.'})",
            model=result.model_used,
            models_tried=result.models_tried,
        )
        return {"model": result.model_used}
