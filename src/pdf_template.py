"""
PDF Template Introspection.

Opens a PDF through a chain of progressively stricter parse options, walks
its AcroForm fields in discovery order, classifies each widget, and proposes
a client-data path for each field from its name. Loaded templates are kept in
the session's template store.
"""

import asyncio
import base64
import binascii
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from pypdf import PdfReader
from pypdf.generic import ArrayObject, DictionaryObject, IndirectObject

from errors import ExtractionError, TemplateValidationError, UnparsablePDFError
from fallback import FallbackExhausted, try_in_order
from file_access import FileAccess
from record_store import RecordStore
from schemas import PDFTemplate, validate_data

# Logger Setup
logger = logging.getLogger("pdf_template")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

DEFAULT_CATEGORY = "Uncategorized"

# AcroForm field flags (PDF 32000-1, 12.7.4)
FLAG_RADIO = 1 << 15
FLAG_PUSHBUTTON = 1 << 16

# Substring of the lower-cased field name -> client-data path. First match wins.
MAPPING_RULES: List[Tuple[str, str]] = [
    ("first", "firstName"),
    ("firstname", "firstName"),
    ("first_name", "firstName"),
    ("fname", "firstName"),
    ("given", "firstName"),
    ("last", "lastName"),
    ("lastname", "lastName"),
    ("last_name", "lastName"),
    ("lname", "lastName"),
    ("surname", "lastName"),
    ("email", "email"),
    ("mail", "email"),
    ("phone", "phone"),
    ("telephone", "phone"),
    ("tel", "phone"),
    ("mobile", "phone"),
    ("address", "address.street"),
    ("street", "address.street"),
    ("city", "address.city"),
    ("state", "address.state"),
    ("zip", "address.zipCode"),
    ("zipcode", "address.zipCode"),
    ("postal", "address.zipCode"),
    ("dob", "dateOfBirth"),
    ("birthdate", "dateOfBirth"),
    ("birth_date", "dateOfBirth"),
    ("date_of_birth", "dateOfBirth"),
    ("birth", "dateOfBirth"),
]

# Keyword in the lower-cased template name -> category. First match wins.
CATEGORY_RULES: List[Tuple[str, str]] = [
    ("consent", "Consent Forms"),
    ("authorization", "Authorization Forms"),
    ("plan", "Plans"),
    ("agreement", "Agreements"),
    ("application", "Applications"),
]
OTHER_CATEGORY = "Other"


# ============================================================================
# Heuristics
# ============================================================================

def suggest_mapping(field_name: str) -> Optional[str]:
    """Client-data path suggested by the first matching name rule, or None."""
    name = field_name.lower()
    for pattern, path in MAPPING_RULES:
        if pattern in name:
            return path
    return None


def categorize_template(template: PDFTemplate) -> str:
    """Category from the template's display name. Pure; same name, same category."""
    name = template.name.lower()
    for keyword, category in CATEGORY_RULES:
        if keyword in name:
            return category
    return OTHER_CATEGORY


# ============================================================================
# PDF Parsing
# ============================================================================

@dataclass(frozen=True)
class ParseOptions:
    """One leniency level for opening a PDF."""
    name: str
    tolerate_encryption: bool
    tolerate_invalid_objects: bool


PARSE_LEVELS: List[ParseOptions] = [
    ParseOptions("lenient", tolerate_encryption=True, tolerate_invalid_objects=True),
    ParseOptions("tolerate-invalid-objects", tolerate_encryption=False, tolerate_invalid_objects=True),
    ParseOptions("strict", tolerate_encryption=False, tolerate_invalid_objects=False),
]


def coerce_pdf_bytes(content: Union[bytes, bytearray, str]) -> bytes:
    """
    Accept raw PDF bytes, base64 text (optionally a data: URL), or base64
    bytes, and return raw PDF bytes.

    Raises:
        ValueError: If a string is neither PDF text nor valid base64
    """
    if isinstance(content, str):
        text = content.split("base64,", 1)[1] if "base64," in content else content
        if text.lstrip().startswith("%PDF"):
            return text.encode("latin-1")
        try:
            return base64.b64decode("".join(text.split()), validate=True)
        except binascii.Error as e:
            raise ValueError(f"Content is neither PDF bytes nor base64: {e}") from e

    data = bytes(content)
    if data.lstrip()[:4] == b"%PDF":
        return data
    try:
        decoded = base64.b64decode(b"".join(data.split()), validate=True)
    except binascii.Error:
        return data
    return decoded if decoded.lstrip()[:4] == b"%PDF" else data


def open_pdf(pdf_bytes: bytes, options: ParseOptions) -> PdfReader:
    """Open a PDF with one leniency level. Raises on failure."""
    reader = PdfReader(BytesIO(pdf_bytes), strict=not options.tolerate_invalid_objects)
    if reader.is_encrypted:
        if not options.tolerate_encryption:
            raise ExtractionError("PDF is encrypted")
        if not reader.decrypt(""):
            raise ExtractionError("PDF is password protected")
    # Force the catalog and page tree to load inside this attempt
    len(reader.pages)
    reader.trailer["/Root"]
    return reader


def load_pdf_document(pdf_bytes: bytes, file_name: str) -> PdfReader:
    """
    Open a PDF trying each level in PARSE_LEVELS until one succeeds.

    Raises:
        UnparsablePDFError: If every level fails
    """
    try:
        reader, options = try_in_order(PARSE_LEVELS, lambda opts: open_pdf(pdf_bytes, opts))
    except FallbackExhausted as e:
        logger.error(f"All parse attempts failed for {file_name}: {e.last_error}")
        raise UnparsablePDFError(file_name, e.last_error) from e.last_error
    logger.debug(f"Parsed {file_name} with '{options.name}' options")
    return reader


# ============================================================================
# Live Form Fields
# ============================================================================

@dataclass
class LiveField:
    """A terminal AcroForm field as found in the document."""
    name: str
    kind: str  # text, date, checkbox, radio, dropdown, signature, button, unknown
    options: List[Tuple[str, str]] = field(default_factory=list)  # (export, display)
    max_length: Optional[int] = None
    page: int = 0
    rect: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)

    @property
    def field_type(self) -> str:
        """Template field type. Kinds with no template counterpart default to text."""
        if self.kind in ("button", "unknown"):
            return "text"
        return self.kind


def _resolve(obj: Any) -> Any:
    return obj.get_object() if obj is not None else None


def _ref_id(obj: Any) -> Optional[int]:
    return obj.idnum if isinstance(obj, IndirectObject) else None


def _format_script(node: DictionaryObject) -> str:
    actions = _resolve(node.get("/AA"))
    if not isinstance(actions, DictionaryObject):
        return ""
    format_action = _resolve(actions.get("/F"))
    if not isinstance(format_action, DictionaryObject):
        return ""
    script = _resolve(format_action.get("/JS"))
    if script is None:
        return ""
    if hasattr(script, "get_data"):
        return script.get_data().decode("latin-1", errors="ignore")
    return str(script)


def classify_field(field_type: Any, flags: int, node: DictionaryObject) -> str:
    """Classify a terminal field from its /FT and /Ff entries."""
    ft = str(field_type or "")
    if ft == "/Tx":
        return "date" if "AFDate_" in _format_script(node) else "text"
    if ft == "/Btn":
        if flags & FLAG_PUSHBUTTON:
            return "button"
        if flags & FLAG_RADIO:
            return "radio"
        return "checkbox"
    if ft == "/Ch":
        return "dropdown"
    if ft == "/Sig":
        return "signature"
    return "unknown"


def _choice_options(node: DictionaryObject) -> List[Tuple[str, str]]:
    options = []
    for entry in _resolve(node.get("/Opt")) or []:
        entry = _resolve(entry)
        if isinstance(entry, ArrayObject) and len(entry) >= 2:
            options.append((str(_resolve(entry[0])), str(_resolve(entry[1]))))
        else:
            options.append((str(entry), str(entry)))
    return options


def _appearance_states(widgets: List[DictionaryObject]) -> List[Tuple[str, str]]:
    states = []
    for widget in widgets:
        appearance = _resolve(widget.get("/AP"))
        normal = _resolve(appearance.get("/N")) if isinstance(appearance, DictionaryObject) else None
        if not isinstance(normal, DictionaryObject):
            continue
        for state in normal.keys():
            value = str(state).lstrip("/")
            if value != "Off" and (value, value) not in states:
                states.append((value, value))
    return states


def _annotation_pages(reader: PdfReader) -> Dict[int, int]:
    """Map widget annotation object numbers to their page index."""
    pages: Dict[int, int] = {}
    for page_index, page in enumerate(reader.pages):
        for ref in _resolve(page.get("/Annots")) or []:
            idnum = _ref_id(ref)
            if idnum is not None:
                pages.setdefault(idnum, page_index)
    return pages


def read_live_fields(reader: PdfReader) -> List[LiveField]:
    """
    Terminal form fields in AcroForm discovery order, with inherited /FT,
    /Ff and /MaxLen resolved and names fully qualified ('parent.child').
    """
    acro_form = _resolve(reader.trailer["/Root"].get("/AcroForm"))
    if not isinstance(acro_form, DictionaryObject):
        return []
    top_fields = _resolve(acro_form.get("/Fields"))
    if not top_fields:
        return []

    annotation_pages = _annotation_pages(reader)
    result: List[LiveField] = []
    visited: Set[int] = set()

    def walk(refs: List[Any], parent_name: str, inherited: Dict[str, Any]) -> None:
        for ref in refs:
            idnum = _ref_id(ref)
            if idnum is not None:
                if idnum in visited:
                    continue
                visited.add(idnum)
            node = _resolve(ref)
            if not isinstance(node, DictionaryObject):
                continue

            partial = node.get("/T")
            if partial is not None:
                name = f"{parent_name}.{partial}" if parent_name else str(partial)
            else:
                name = parent_name

            node_inherited = dict(inherited)
            for key in ("/FT", "/Ff", "/MaxLen"):
                if key in node:
                    node_inherited[key] = _resolve(node[key])

            child_fields, widgets = [], []
            for kid_ref in _resolve(node.get("/Kids")) or []:
                kid = _resolve(kid_ref)
                if isinstance(kid, DictionaryObject) and "/T" in kid:
                    child_fields.append(kid_ref)
                elif isinstance(kid, DictionaryObject):
                    widgets.append((_ref_id(kid_ref), kid))

            if child_fields:
                walk(child_fields, name, node_inherited)
                continue
            if not name:
                continue

            widgets = widgets or [(idnum, node)]
            kind = classify_field(node_inherited.get("/FT"), int(node_inherited.get("/Ff", 0) or 0), node)

            if kind == "dropdown":
                options = _choice_options(node)
            elif kind in ("radio", "checkbox"):
                options = _appearance_states([w for _, w in widgets])
            else:
                options = []

            first_id, first_widget = widgets[0]
            rect = _resolve(first_widget.get("/Rect"))
            bounds = (0.0, 0.0, 0.0, 0.0)
            if rect is not None and len(rect) == 4:
                x1, y1, x2, y2 = (float(v) for v in rect)
                bounds = (min(x1, x2), min(y1, y2), abs(x2 - x1), abs(y2 - y1))

            max_length = node_inherited.get("/MaxLen")
            result.append(LiveField(
                name=name,
                kind=kind,
                options=options,
                max_length=int(max_length) if max_length is not None else None,
                page=annotation_pages.get(first_id, 0) if first_id is not None else 0,
                rect=bounds,
            ))

    walk(list(top_fields), "", {})
    return result


def introspect_pdf(pdf_bytes: bytes, file_name: str) -> Tuple[int, List[LiveField]]:
    """Parse a PDF and return (page_count, live fields)."""
    reader = load_pdf_document(pdf_bytes, file_name)
    return len(reader.pages), read_live_fields(reader)


def _field_record(index: int, live: LiveField) -> Dict[str, Any]:
    x, y, width, height = live.rect
    record: Dict[str, Any] = {
        "id": f"field_{index}",
        "name": live.name,
        "type": live.field_type,
        "position": {"page": live.page, "x": x, "y": y, "width": width, "height": height},
        "required": False,
        "suggestedMapping": suggest_mapping(live.name),
    }
    if live.max_length is not None:
        record["maxLength"] = live.max_length
    if live.options and live.kind in ("dropdown", "radio"):
        record["options"] = [display for _, display in live.options]
    return record


def generate_template_id() -> str:
    return f"template_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


# ============================================================================
# Service
# ============================================================================

class PDFTemplateService:
    """Loads PDF templates and holds them for the session."""

    def __init__(self, files: Optional[FileAccess] = None, store: Optional[RecordStore[PDFTemplate]] = None):
        self.files = files or FileAccess()
        self.store: RecordStore[PDFTemplate] = store if store is not None else RecordStore()

    async def load_template(self, file_path: str) -> PDFTemplate:
        """
        Load a PDF, discover its form fields and build a template record.

        Args:
            file_path: Path to the PDF

        Returns:
            The validated PDFTemplate (also added to the store)

        Raises:
            ExtractionError: If the file cannot be read
            UnparsablePDFError: If no parse option set can open the PDF
            TemplateValidationError: If the resulting record is invalid
        """
        file_name = Path(file_path).name
        try:
            content = await self.files.read_bytes(file_path)
        except OSError as e:
            raise ExtractionError(f"Failed to load PDF template {file_name}: {e}") from e

        try:
            pdf_bytes = coerce_pdf_bytes(content)
        except ValueError as e:
            raise UnparsablePDFError(file_name, e) from e

        page_count, live_fields = await asyncio.to_thread(introspect_pdf, pdf_bytes, file_name)

        template_data = {
            "id": generate_template_id(),
            "name": Path(file_path).stem,
            "category": DEFAULT_CATEGORY,
            "filePath": file_path,
            "fields": [_field_record(i, live) for i, live in enumerate(live_fields)],
            "metadata": {
                "pageCount": page_count,
                "fileSize": len(pdf_bytes),
                "addedDate": datetime.now(),
            },
        }

        validation = validate_data(PDFTemplate, template_data)
        if not validation.success:
            raise TemplateValidationError("Template validation failed", validation.result.errors)

        template = validation.data
        self.store.add(template)
        mapped = sum(1 for f in template.fields if f.suggested_mapping)
        logger.info(
            f"Loaded template '{template.name}': {len(template.fields)} fields "
            f"({mapped} with suggested mappings), {page_count} pages"
        )
        return template

    def categorize_template(self, template: PDFTemplate) -> str:
        return categorize_template(template)

    def get_template(self, template_id: str) -> Optional[PDFTemplate]:
        return self.store.get(template_id)

    def get_all_templates(self) -> List[PDFTemplate]:
        return self.store.all()

    def delete_template(self, template_id: str) -> bool:
        return self.store.remove(template_id)

    def clear_templates(self) -> None:
        self.store.clear()


# ============================================================================
# CLI Entry Point
# ============================================================================

if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Inspect a fillable PDF template")
    parser.add_argument("pdf_path", help="Path to the PDF template")
    args = parser.parse_args()

    async def _main(path: str) -> None:
        template = await PDFTemplateService().load_template(path)
        template.category = categorize_template(template)
        print(json.dumps(template.model_dump(mode="json", by_alias=True), indent=2))

    try:
        asyncio.run(_main(args.pdf_path))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
