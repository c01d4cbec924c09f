import hashlib
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ecoextract.infra.config import PipelineConfig, load_config_file
from ecoextract.infra.ocr import PAGE_MARKER_PREFIX


_PLACEHOLDER_RE = re.compile(r"\{([a-z_]+)\}")


def render_template(template: str, **values: Any) -> str:
    """Fill {name} placeholders; unknown braces are left as written."""
    def _replace(match):
        name = match.group(1)
        if name not in values:
            return match.group(0)
        value = values[name]
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_replace, template)


def prompt_hash(*parts: str) -> str:
    return hashlib.md5("\n".join(parts).encode("utf-8")).hexdigest()


def limit_to_first_pages(content: str, n: int = 3) -> str:
    """Content up to and including the marker after page n."""
    if not content:
        return content

    position = 0
    for _ in range(n):
        found = content.find(PAGE_MARKER_PREFIX, position)
        if found == -1:
            return content
        end_of_line = content.find("\n", found)
        position = len(content) if end_of_line == -1 else end_of_line
    return content[:position]


@dataclass
class Prompts:
    extraction: str
    extraction_context: str
    refinement: str
    refinement_context: str
    metadata: str
    metadata_context: str
    metadata_schema: Dict[str, Any]
    deduplication: str

    @property
    def extraction_hash(self) -> str:
        return prompt_hash(self.extraction)

    @property
    def refinement_hash(self) -> str:
        return prompt_hash(self.refinement, self.refinement_context)


def load_prompts(config: PipelineConfig, project_root: Optional[Path] = None) -> Prompts:
    """Resolve every prompt through the project override search."""
    def _read(file_path: Optional[str], name: str, subdir: str = "prompts") -> str:
        return load_config_file(file_path, name, subdir, return_content=True, project_root=project_root)

    return Prompts(
        extraction=_read(config.extraction_prompt_file, "extraction_prompt.md"),
        extraction_context=_read(None, "extraction_context.md"),
        refinement=_read(config.refinement_prompt_file, "refinement_prompt.md"),
        refinement_context=_read(None, "refinement_context.md"),
        metadata=_read(config.metadata_prompt_file, "metadata_prompt.md"),
        metadata_context=_read(None, "metadata_context.md"),
        metadata_schema=json.loads(_read(None, "metadata_schema.json", "data")),
        deduplication=_read(None, "deduplication_prompt.md"),
    )


def format_records_context(
    records: List[Dict[str, Any]],
    fields: List[str],
    empty_message: str = "No records have been extracted from this document yet.",
) -> str:
    """One line per record: its record_id then its populated fields as JSON."""
    if not records:
        return empty_message

    lines = ["Existing records:", ""]
    for record in records:
        values = {name: record.get(name) for name in fields if record.get(name) not in (None, "", [])}
        lines.append(f"- {record.get('record_id')}: {json.dumps(values, ensure_ascii=False, default=str)}")
    return "\n".join(lines)
