"""
Field Mapping Engine.

Binds each template field to a client-data path (heuristic suggestion first,
then the language model, otherwise unmapped), resolves the client's value at
that path and transforms it into the form the widget expects.
"""

import logging
import re
from dataclasses import dataclass, field as dataclass_field
from datetime import date
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

from gemini_client import GeminiService
from schemas import Client, FieldMapping, FormField
from validators import format_date, format_phone

# Logger Setup
logger = logging.getLogger("field_mapping")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

HEURISTIC_CONFIDENCE = 0.7
UNMAPPED_CONFIDENCE = 0.3
REVIEW_THRESHOLD = 0.5  # mappings below this need a human look

PHONE_DIGITS_PATTERN = re.compile(r"\d{10,11}")


# ============================================================================
# Client-Data Paths
# ============================================================================

def _as_record(client: Union[Client, BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(client, BaseModel):
        return client.model_dump(by_alias=True)
    return client


def get_client_field_paths(client: Union[Client, Dict[str, Any]]) -> List[str]:
    """
    Every leaf of the client's camelCase dump as a dotted path.

    Non-empty dicts recurse; dates, lists, scalars and None are leaves.
    """
    paths: List[str] = []

    def add_paths(obj: Dict[str, Any], prefix: str) -> None:
        for key, value in obj.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if isinstance(value, dict) and value:
                add_paths(value, path)
            elif isinstance(value, dict):
                continue
            else:
                paths.append(path)

    add_paths(_as_record(client), "")
    return paths


def get_value_from_path(record: Union[Client, Dict[str, Any]], path: str) -> Any:
    """Value at a dotted path, or None if any segment is missing."""
    if not path:
        return None
    current: Any = _as_record(record)
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def transform_value(value: Any, field_type: str) -> str:
    """Render a client value as the string a widget of `field_type` expects."""
    if value is None:
        return ""
    if field_type == "date":
        return format_date(value)
    if field_type == "text":
        if isinstance(value, str) and PHONE_DIGITS_PATTERN.fullmatch(value):
            return format_phone(value)
        return str(value)
    if field_type == "checkbox":
        return "Yes" if value else "No"
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


# ============================================================================
# Mapping Stats
# ============================================================================

@dataclass
class MappingStats:
    """Summary of one mapping run, for review before a fill is trusted."""
    total_fields: int = 0
    heuristic_mapped: int = 0
    ai_mapped: int = 0
    manually_mapped: int = 0
    unmapped: int = 0
    empty_values: int = 0  # mapped, but the client has no value at the path
    low_confidence_fields: List[str] = dataclass_field(default_factory=list)

    @property
    def mapped(self) -> int:
        return self.total_fields - self.unmapped

    @property
    def coverage(self) -> float:
        """Percentage of fields with a client-data path."""
        if self.total_fields == 0:
            return 0.0
        return self.mapped / self.total_fields * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_fields": self.total_fields,
            "heuristic_mapped": self.heuristic_mapped,
            "ai_mapped": self.ai_mapped,
            "manually_mapped": self.manually_mapped,
            "unmapped": self.unmapped,
            "empty_values": self.empty_values,
            "coverage": f"{self.coverage:.1f}%",
            "low_confidence_fields": self.low_confidence_fields,
        }

    def __str__(self) -> str:
        return (
            f"{self.mapped}/{self.total_fields} fields mapped ({self.coverage:.1f}%), "
            f"{len(self.low_confidence_fields)} need review"
        )


def _mapping_source(mapping: FieldMapping) -> str:
    if not mapping.client_data_path:
        return "unmapped"
    if mapping.source:
        return mapping.source
    if mapping.manually_mapped:
        return "manual"
    return "ai"


def summarize_mappings(mappings: List[FieldMapping]) -> MappingStats:
    """Count mappings by how their path was chosen; records without a source count as AI."""
    stats = MappingStats(total_fields=len(mappings))
    for mapping in mappings:
        source = _mapping_source(mapping)
        if source == "unmapped":
            stats.unmapped += 1
        elif source == "manual":
            stats.manually_mapped += 1
        elif source == "heuristic":
            stats.heuristic_mapped += 1
        else:
            stats.ai_mapped += 1

        if mapping.client_data_path and not mapping.value:
            stats.empty_values += 1
        if mapping.confidence < REVIEW_THRESHOLD:
            stats.low_confidence_fields.append(mapping.field_name)
    return stats


# ============================================================================
# Engine
# ============================================================================

class FieldMappingEngine:
    """Produces FieldMapping records for a template's fields and one client."""

    def __init__(self, gemini: Optional[GeminiService] = None):
        self.gemini = gemini

    def _ai_available(self, use_ai: bool) -> bool:
        return use_ai and self.gemini is not None and self.gemini.is_configured()

    async def map_fields(
        self,
        fields: List[FormField],
        client: Client,
        use_ai: bool = True,
    ) -> List[FieldMapping]:
        """
        Map every field, in order.

        Args:
            fields: Template fields
            client: Canonical client record
            use_ai: Ask the language model about fields with no heuristic match

        Returns:
            One FieldMapping per field, same order as `fields`
        """
        record = _as_record(client)
        available_paths = get_client_field_paths(record)
        mappings: List[FieldMapping] = []

        for form_field in fields:
            client_data_path = form_field.suggested_mapping or ""
            confidence = HEURISTIC_CONFIDENCE if client_data_path else UNMAPPED_CONFIDENCE
            source = "heuristic"

            if not client_data_path and self._ai_available(use_ai):
                try:
                    suggestion = await self.gemini.suggest_field_mapping(
                        form_field.name,
                        f"PDF form field of type '{form_field.type}'",
                        available_paths,
                    )
                    client_data_path = suggestion.suggested_field
                    confidence = suggestion.confidence
                    source = "ai"
                except Exception as e:
                    logger.warning(f"AI mapping failed for '{form_field.name}', keeping heuristic result: {e}")

            value = get_value_from_path(record, client_data_path)
            mappings.append(FieldMapping(
                field_id=form_field.id,
                field_name=form_field.name,
                client_data_path=client_data_path,
                value=transform_value(value, form_field.type),
                confidence=confidence,
                manually_mapped=False,
                source=source if client_data_path else "unmapped",
            ))

        logger.info(f"Mapped fields: {summarize_mappings(mappings)}")
        return mappings
