"""
Canonical record schemas and the validation gate for externally sourced data.

Attributes are snake_case; records validate and serialize by camelCase alias
so client-data paths (e.g. 'address.zipCode') and the JSON exchanged with the
language model keep the camelCase names.
"""

import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from validators import is_valid_email

FieldType = Literal["text", "checkbox", "radio", "dropdown", "signature", "date"]
FIELD_TYPES = ("text", "checkbox", "radio", "dropdown", "signature", "date")

# Tagged value union for custom fields; order matters for smart-mode matching.
CustomFieldValue = Union[StrictBool, StrictInt, StrictFloat, datetime, date, str]

ModelT = TypeVar("ModelT", bound=BaseModel)


def coerce_custom_value(value: Any) -> Union[bool, int, float, datetime, date, str]:
    """Coerce an arbitrary source value into the custom field value union."""
    if value is None:
        return ""
    if isinstance(value, (bool, int, float, datetime, date, str)):
        return value
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, default=str)
    return str(value)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Client Records
# ============================================================================

class Address(CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class ClientMetadata(CamelModel):
    source: str = Field(description="Provenance tag: 'file', 'documents', ...")
    last_updated: datetime


class Client(CamelModel):
    """Canonical person record."""
    id: str
    first_name: str
    last_name: str
    date_of_birth: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    custom_fields: Dict[str, CustomFieldValue] = Field(default_factory=dict)
    metadata: ClientMetadata

    @field_validator("first_name")
    @classmethod
    def _first_name_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("First name is required")
        return value

    @field_validator("last_name")
    @classmethod
    def _last_name_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Last name is required")
        return value

    @field_validator("email")
    @classmethod
    def _email_format(cls, value: Optional[str]) -> Optional[str]:
        if value and not is_valid_email(value):
            raise ValueError(f"Invalid email address: {value}")
        return value

    @field_validator("custom_fields", mode="before")
    @classmethod
    def _coerce_custom_fields(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): coerce_custom_value(v) for k, v in value.items()}
        return value


# ============================================================================
# Template Records
# ============================================================================

class FieldPosition(CamelModel):
    page: int = 0
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class FormField(CamelModel):
    """One fillable widget on a template."""
    id: str
    name: str
    type: FieldType
    position: FieldPosition = Field(default_factory=FieldPosition)
    required: bool = False
    max_length: Optional[int] = None
    options: Optional[List[str]] = None
    suggested_mapping: Optional[str] = None


class TemplateMetadata(CamelModel):
    page_count: int
    file_size: int
    added_date: datetime


class PDFTemplate(CamelModel):
    """Canonical form-template record."""
    id: str
    name: str
    category: str
    file_path: str
    fields: List[FormField]
    thumbnail: Optional[str] = None
    metadata: TemplateMetadata

    @field_validator("name")
    @classmethod
    def _name_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Template name is required")
        return value


# ============================================================================
# Mapping Records
# ============================================================================

MappingSource = Literal["heuristic", "ai", "manual", "unmapped"]


class FieldMapping(CamelModel):
    """A resolved binding produced for one fill operation."""
    field_id: str
    field_name: str
    client_data_path: str
    value: Optional[str] = Field(default="", description="Value already transformed for the widget.")
    confidence: float = Field(ge=0, le=1)
    manually_mapped: bool = False
    source: Optional[MappingSource] = Field(default=None, description="How client_data_path was chosen.")


class MappingAlternative(CamelModel):
    field: str
    confidence: float = Field(ge=0, le=1)


class MappingSuggestion(CamelModel):
    suggested_field: str
    confidence: float = Field(ge=0, le=1)
    reasoning: str = ""
    alternatives: List[MappingAlternative] = Field(default_factory=list)

    @field_validator("alternatives")
    @classmethod
    def _at_most_three(cls, value: List[MappingAlternative]) -> List[MappingAlternative]:
        return value[:3]


class FieldInterpretation(CamelModel):
    purpose: str
    expected_data_type: str
    suggested_format: str = ""
    confidence: float = Field(ge=0, le=1)


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# ============================================================================
# Validation Gate
# ============================================================================

@dataclass
class ValidationOutcome:
    """Result of validate_data(): either `data` or a failing `result`."""
    success: bool
    data: Optional[BaseModel]
    result: ValidationResult


def format_validation_errors(error: PydanticValidationError) -> List[str]:
    """Flatten a pydantic error into 'dotted.location: message' strings."""
    messages = []
    for err in error.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        message = err.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return messages


def validate_data(model: Type[ModelT], raw: Any) -> ValidationOutcome:
    """
    Validate and coerce raw input into a canonical record.

    Never raises for bad input; every violated constraint is listed in
    outcome.result.errors.

    Args:
        model: Target schema (Client, PDFTemplate, ...)
        raw: Untyped input, usually a dict

    Returns:
        ValidationOutcome with the record on success
    """
    try:
        record = model.model_validate(raw)
    except PydanticValidationError as e:
        return ValidationOutcome(
            success=False,
            data=None,
            result=ValidationResult(valid=False, errors=format_validation_errors(e)),
        )
    return ValidationOutcome(success=True, data=record, result=ValidationResult(valid=True))
