"""
Record schema handling.

The record schema is a JSON Schema whose top level holds a `records` array of
objects. Two annotations on the items object drive the core:

- `x-unique-fields`: fields that jointly identify a record (deduplication and
  major-edit classification)
- `required`: fields that must carry data

The schema is read once per run into a RecordSchema, a typed field map that is
passed explicitly to the store, the stages, the deduplication engine and the
accuracy calculator.
"""

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ecoextract.infra.errors import SchemaError


RESERVED_COLUMNS = {
    "id",
    "document_id",
    "record_id",
    "extraction_timestamp",
    "llm_model",
    "prompt_hash",
    "added_by_user",
    "deleted_by_user",
    "human_edited",
}

SQL_TYPES = {
    "string": "TEXT",
    "integer": "INTEGER",
    "number": "REAL",
    "boolean": "BOOLEAN",
    "array": "TEXT",
    "object": "TEXT",
}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    json_type: str
    sql_type: str
    required: bool = False
    description: str = ""

    @property
    def is_json(self) -> bool:
        return self.json_type in ("array", "object")


@dataclass
class RecordSchema:
    fields: Dict[str, FieldSpec]
    unique_fields: List[str]
    required_fields: List[str]
    raw: Dict[str, Any] = field(repr=False, default_factory=dict)

    @property
    def field_names(self) -> List[str]:
        return list(self.fields)

    @property
    def num_fields(self) -> int:
        return len(self.fields)

    @property
    def major_fields(self) -> set:
        """Fields whose edits count as major (unique or required)."""
        return set(self.unique_fields) | set(self.required_fields)

    def response_format(self, name: str = "records", include_record_id: bool = False) -> Dict[str, Any]:
        """
        JSON schema wrapped for OpenRouter structured output.

        Custom x- annotations are stripped. With include_record_id the items
        gain a `record_id` property so refinement can echo business keys.
        """
        schema = _strip_extensions(copy.deepcopy(self.raw))
        if include_record_id:
            items = schema["properties"]["records"]["items"]
            items["properties"] = {
                "record_id": {
                    "type": "string",
                    "description": "Identifier of the existing record being refined",
                },
                **items["properties"],
            }
            items["required"] = ["record_id"] + list(items.get("required", []))
        return {
            "type": "json_schema",
            "json_schema": {"name": name, "schema": schema},
        }

    def normalize_record(self, record: Dict[str, Any], index: int = 0) -> Dict[str, Any]:
        """
        Keep only schema fields and coerce array fields.

        Scalars returned for array-typed fields are wrapped in a list.
        Raises ValueError when a required field has no data.
        """
        normalized = {}
        for name, spec in self.fields.items():
            value = record.get(name)

            if _is_missing(value):
                if spec.required:
                    raise ValueError(
                        f"Required field '{name}' is missing in record {index}. "
                        f"LLM must return a value for this field."
                    )
                normalized[name] = None
                continue

            if spec.json_type == "array" and not isinstance(value, list):
                value = [value]

            normalized[name] = value
        return normalized

    def to_storage(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Convert schema field values to their column representation."""
        row = {}
        for name, spec in self.fields.items():
            if name not in record:
                continue
            value = record[name]
            if value is None:
                row[name] = None
            elif spec.is_json:
                row[name] = value if isinstance(value, str) else json.dumps(value)
            elif spec.json_type == "boolean":
                row[name] = 1 if value else 0
            else:
                row[name] = value
        return row

    def from_storage(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Inverse of to_storage for schema fields; other keys pass through."""
        record = dict(row)
        for name, spec in self.fields.items():
            value = record.get(name)
            if value is None:
                continue
            if spec.is_json and isinstance(value, str):
                try:
                    record[name] = json.loads(value)
                except json.JSONDecodeError:
                    record[name] = value
            elif spec.json_type == "boolean":
                record[name] = bool(value)
        return record


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    if isinstance(value, (list, dict)) and len(value) == 0:
        return True
    return False


def _strip_extensions(node: Any) -> Any:
    if isinstance(node, dict):
        return {k: _strip_extensions(v) for k, v in node.items() if not k.startswith("x-")}
    if isinstance(node, list):
        return [_strip_extensions(v) for v in node]
    return node


def _resolve_type(field_spec: Dict[str, Any]) -> str:
    field_type = field_spec.get("type")
    if field_type is None:
        return "string"
    if isinstance(field_type, list):
        non_null = [t for t in field_type if t != "null"]
        return non_null[0] if non_null else "string"
    return field_type


def parse_schema(schema: Dict[str, Any]) -> RecordSchema:
    """
    Validate a parsed JSON schema and build the typed field map.

    Raises:
        SchemaError: If the records wrapper, item properties, or the
            x-unique-fields / required declarations are invalid
    """
    if not isinstance(schema, dict):
        raise SchemaError("Schema must be a JSON object")

    records = schema.get("properties", {}).get("records")
    if not isinstance(records, dict):
        raise SchemaError("Schema must contain 'properties.records'")

    if records.get("type", "array") != "array":
        raise SchemaError("'properties.records' must be of type 'array'")

    items = records.get("items")
    if not isinstance(items, dict) or not isinstance(items.get("properties"), dict):
        raise SchemaError("Schema must contain 'properties.records.items.properties'")

    properties = items["properties"]
    if not properties:
        raise SchemaError("Record schema declares no fields")

    reserved = sorted(RESERVED_COLUMNS & set(properties))
    if reserved:
        raise SchemaError(f"Reserved column names cannot be schema fields: {', '.join(reserved)}")

    required = list(items.get("required", []) or [])
    unknown_required = [f for f in required if f not in properties]
    if unknown_required:
        raise SchemaError(
            f"Invalid required fields in schema: {', '.join(unknown_required)}. "
            f"Available fields: {', '.join(properties)}"
        )

    unique_fields = list(items.get("x-unique-fields", []) or [])
    if not unique_fields:
        raise SchemaError(
            "Schema must define 'x-unique-fields' at properties > records > items level "
            "to specify which fields define record uniqueness. Add "
            "'x-unique-fields': [\"field1\", \"field2\", ...] as a sibling to 'required'."
        )

    unknown_unique = [f for f in unique_fields if f not in properties]
    if unknown_unique:
        raise SchemaError(
            f"Invalid x-unique-fields in schema: {', '.join(unknown_unique)}. "
            f"These fields are not defined in record schema properties. "
            f"Available fields: {', '.join(properties)}"
        )

    fields = {}
    for name, spec in properties.items():
        json_type = _resolve_type(spec or {})
        fields[name] = FieldSpec(
            name=name,
            json_type=json_type,
            sql_type=SQL_TYPES.get(json_type, "TEXT"),
            required=name in required,
            description=(spec or {}).get("description", ""),
        )

    return RecordSchema(
        fields=fields,
        unique_fields=unique_fields,
        required_fields=required,
        raw=schema,
    )


def load_schema(schema_file: Optional[Union[str, Path]] = None) -> RecordSchema:
    """
    Load and validate the record schema.

    Args:
        schema_file: Explicit schema path; otherwise resolved through the
            project override search (ecoextract/schema.json, ..., packaged)
    """
    from ecoextract.infra.config import load_config_file

    path = load_config_file(schema_file, "schema.json", "data")
    try:
        with open(path, encoding="utf-8") as f:
            schema = json.load(f)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Schema file {path} is not valid JSON: {e}") from e

    return parse_schema(schema)
