"""
Form Filling & Export.

Fills a template's live AcroForm with one client's mapped values using
PyPDFForm, and writes the result under a sanitized, timestamped file name.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from PyPDFForm import PdfWrapper

from errors import ExportError, ExtractionError, NoOutputDirectoryError, UnparsablePDFError
from field_mapping import FieldMappingEngine, MappingStats, summarize_mappings
from file_access import FileAccess
from gemini_client import GeminiService
from pdf_template import LiveField, coerce_pdf_bytes, introspect_pdf
from schemas import Client, FieldMapping, PDFTemplate
from validators import sanitize_file_name

# Logger Setup
logger = logging.getLogger("form_fill")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

CHECKED_VALUES = (True, "true", "Yes", "1")
ORGANIZATION_MODES = ("none", "by-client", "by-date", "by-template")

FillValue = Union[str, bool, int]


@dataclass
class FillResult:
    """Filled document bytes plus the mappings that produced them."""
    pdf_bytes: bytes
    mappings: List[FieldMapping]
    stats: MappingStats
    fields_written: int = 0


# ============================================================================
# Value Conversion
# ============================================================================

def _dropdown_index(live: LiveField, value: str) -> Optional[int]:
    for index, (export_value, display_value) in enumerate(live.options):
        if value in (export_value, display_value):
            return index
    return None


def build_fill_values(live_fields: List[LiveField], mappings: List[FieldMapping]) -> Dict[str, FillValue]:
    """
    Convert mappings into the value dict PyPDFForm writes, keyed by the
    fully qualified field name.

    text/date -> str, checkbox -> bool, dropdown -> option index. Unmapped
    fields carry an empty value and are written too, so a pre-filled text
    field is cleared and a pre-checked checkbox is unchecked. Fields missing
    from the document, unsupported kinds and values outside a dropdown's
    options are logged and skipped.
    """
    live_by_name = {live.name: live for live in live_fields}
    values: Dict[str, FillValue] = {}

    for mapping in mappings:
        if mapping.value is None:
            continue

        live = live_by_name.get(mapping.field_name)
        if live is None:
            logger.warning(f"Field '{mapping.field_name}' not found in the PDF form, skipping")
            continue

        if live.kind in ("text", "date"):
            values[live.name] = str(mapping.value)
        elif live.kind == "checkbox":
            values[live.name] = mapping.value in CHECKED_VALUES
        elif live.kind == "dropdown":
            if not mapping.value:
                continue
            index = _dropdown_index(live, str(mapping.value))
            if index is None:
                logger.warning(f"Value '{mapping.value}' is not an option of dropdown '{live.name}', skipping")
                continue
            values[live.name] = index
        else:
            logger.warning(f"Field '{live.name}' has unsupported kind '{live.kind}', skipping")

    return values


def resolve_widget_keys(
    field_names: Iterable[str],
    live_names: Iterable[str],
    widget_keys: Iterable[str],
) -> Dict[str, str]:
    """
    Map fully qualified field names to the keys PyPDFForm fills by.

    PyPDFForm may key a nested widget by its partial name ('first_name'
    rather than 'applicant.first_name'). A qualified name the writer knows
    is used as is. Otherwise the last name segment is used, unless another
    live field shares that segment or the writer has no such key; those
    fields are logged and left out.
    """
    widget_keys = set(widget_keys)
    partial_counts = Counter(name.rsplit(".", 1)[-1] for name in live_names)
    resolved: Dict[str, str] = {}

    for name in field_names:
        if name in widget_keys:
            resolved[name] = name
            continue

        partial = name.rsplit(".", 1)[-1]
        if partial not in widget_keys:
            logger.warning(f"Field '{name}' is not exposed by the PDF writer, skipping")
        elif partial_counts[partial] > 1:
            logger.warning(
                f"Field '{name}' shares the partial name '{partial}' with another field "
                f"and cannot be written unambiguously, skipping"
            )
        else:
            resolved[name] = partial

    return resolved


def write_form_values(
    pdf_bytes: bytes,
    values: Dict[str, FillValue],
    live_names: Iterable[str],
    flatten: bool = False,
) -> Tuple[bytes, int]:
    """
    Write values into the form and serialize the document.

    Returns:
        Filled document bytes and the number of fields actually written
    """
    wrapper = PdfWrapper(pdf_bytes)
    keys = resolve_widget_keys(values.keys(), live_names, wrapper.widgets.keys())
    data = {keys[name]: value for name, value in values.items() if name in keys}

    if flatten:
        filled = wrapper.fill(data, flatten=True)
    else:
        filled = wrapper.fill(data)
    return filled.read(), len(data)


# ============================================================================
# Export Naming
# ============================================================================

def build_export_file_name(client: Client, template: PDFTemplate, timestamp_ms: int) -> str:
    parts = [client.last_name, client.first_name, template.name, str(timestamp_ms)]
    return "_".join(sanitize_file_name(part) for part in parts) + ".pdf"


def organization_subdirectory(
    client: Client,
    template: PDFTemplate,
    organization: str,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Sub-directory for an export under the chosen organization mode."""
    if organization == "by-client":
        return sanitize_file_name(f"{client.last_name}_{client.first_name}")
    if organization == "by-date":
        return (now or datetime.now()).strftime("%Y-%m-%d")
    if organization == "by-template":
        return sanitize_file_name(template.name)
    return None


# ============================================================================
# Service
# ============================================================================

class FormFillService:
    """Fills templates for clients and exports the results."""

    def __init__(
        self,
        files: Optional[FileAccess] = None,
        engine: Optional[FieldMappingEngine] = None,
        gemini: Optional[GeminiService] = None,
    ):
        self.files = files or FileAccess()
        self.engine = engine or FieldMappingEngine(gemini)

    async def fill_form(
        self,
        template: PDFTemplate,
        client: Client,
        use_ai: bool = True,
        flatten: bool = False,
    ) -> FillResult:
        """
        Fill a template's PDF with one client's data.

        Args:
            template: Loaded template (its file_path is re-read)
            client: Canonical client record
            use_ai: Ask the language model about fields with no heuristic match
            flatten: Make the filled fields non-editable

        Returns:
            FillResult with the filled document and the mappings used

        Raises:
            ExtractionError: If the template file cannot be read or written into
            UnparsablePDFError: If no parse option set can open the PDF
        """
        file_name = Path(template.file_path).name
        try:
            content = await self.files.read_bytes(template.file_path)
        except OSError as e:
            raise ExtractionError(f"Failed to fill form: cannot read {file_name}: {e}") from e

        try:
            pdf_bytes = coerce_pdf_bytes(content)
        except ValueError as e:
            raise UnparsablePDFError(file_name, e) from e

        _, live_fields = await asyncio.to_thread(introspect_pdf, pdf_bytes, file_name)
        mappings = await self.engine.map_fields(template.fields, client, use_ai)
        values = build_fill_values(live_fields, mappings)

        try:
            filled_bytes, written = await asyncio.to_thread(
                write_form_values, pdf_bytes, values, [live.name for live in live_fields], flatten
            )
        except Exception as e:
            raise ExtractionError(f"Failed to fill form {file_name}: {e}") from e

        stats = summarize_mappings(mappings)
        logger.info(
            f"Filled '{template.name}' for {client.first_name} {client.last_name}: "
            f"{written} fields written, {stats}"
        )
        return FillResult(pdf_bytes=filled_bytes, mappings=mappings, stats=stats, fields_written=written)

    async def export_pdf(
        self,
        pdf_bytes: bytes,
        client: Client,
        template: PDFTemplate,
        output_directory: Optional[str] = None,
        organization: str = "none",
    ) -> str:
        """
        Write a filled PDF and return its path.

        Without output_directory the file-access chooser is asked for one.

        Raises:
            ValueError: Unknown organization mode
            NoOutputDirectoryError: No directory given or chosen (nothing written)
            ExportError: If the write fails
        """
        if organization not in ORGANIZATION_MODES:
            raise ValueError(f"Unknown organization mode: {organization}")

        directory = output_directory or await self.files.select_directory()
        if not directory:
            raise NoOutputDirectoryError("No output directory selected")

        file_name = build_export_file_name(client, template, int(time.time() * 1000))
        subdirectory = organization_subdirectory(client, template, organization)
        output_path = Path(directory) / subdirectory / file_name if subdirectory else Path(directory) / file_name

        try:
            await self.files.write_bytes(str(output_path), pdf_bytes)
        except OSError as e:
            raise ExportError(f"Failed to export PDF to {output_path}: {e}") from e

        logger.info(f"Exported {output_path} ({len(pdf_bytes):,} bytes)")
        return str(output_path)


# ============================================================================
# CLI Entry Point
# ============================================================================

if __name__ == "__main__":
    import argparse
    import sys

    from client_data import ClientDataService
    from errors import FormAssistantError, NotConfiguredError
    from pdf_template import PDFTemplateService
    from secure_store import SecureStore

    parser = argparse.ArgumentParser(description="Fill a PDF form with client data")
    parser.add_argument("--clients", required=True, help="Client file (.json, .csv, .xlsx, .xls)")
    parser.add_argument("--template", required=True, help="Fillable PDF template")
    parser.add_argument("--output-dir", required=True, help="Directory for the filled PDF")
    parser.add_argument("--client-id", help="Client to fill for (default: first loaded)")
    parser.add_argument("--organization", default="none", choices=ORGANIZATION_MODES)
    parser.add_argument("--no-ai", action="store_true", help="Heuristic mapping only")
    parser.add_argument("--flatten", action="store_true", help="Make filled fields non-editable")
    args = parser.parse_args()

    async def _main() -> None:
        clients = await ClientDataService().load_clients_from_file(args.clients)
        if not clients:
            raise FormAssistantError(f"No valid clients in {args.clients}")
        client = next((c for c in clients if c.id == args.client_id), None) if args.client_id else clients[0]
        if client is None:
            raise FormAssistantError(f"Client {args.client_id} not found")

        template = await PDFTemplateService().load_template(args.template)

        gemini = GeminiService(SecureStore())
        if not args.no_ai:
            try:
                await gemini.initialize()
            except NotConfiguredError as e:
                logger.warning(f"Continuing with heuristic mapping only: {e}")

        service = FormFillService(gemini=gemini)
        result = await service.fill_form(template, client, use_ai=not args.no_ai, flatten=args.flatten)
        path = await service.export_pdf(result.pdf_bytes, client, template, args.output_dir, args.organization)

        print(f"\nWrote {path}")
        print(f"\n--- Stats ---")
        print(result.stats)
        for name in result.stats.low_confidence_fields:
            print(f"  review: {name}")

    try:
        asyncio.run(_main())
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
