"""
Document text extraction and AI-assisted client-data extraction.

Text comes out of .txt and Word files directly. PDFs get a placeholder naming
the file (no text layer is read), so the model works from the name and
context alone. Extracted profiles from several files are folded together in
order, each file's result feeding the next.
"""

import asyncio
import io
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import docx

from client_data import generate_client_id
from errors import ExtractionError, NotConfiguredError, UnsupportedFormatError, ValidationError
from file_access import FileAccess
from gemini_client import GeminiService, extract_json_object
from schemas import Client, validate_data

# Logger Setup
logger = logging.getLogger("document_parser")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

SUPPORTED_EXTENSIONS = ("txt", "docx", "doc", "pdf")
NESTED_MERGE_KEYS = ("address", "customFields")


# ============================================================================
# Text Extraction Helpers
# ============================================================================

def extract_word_text(content: bytes) -> str:
    """Raw text of a Word document: paragraphs first, then table cells."""
    document = docx.Document(io.BytesIO(content))
    lines = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append("\t".join(cells))
    return "\n".join(lines)


def pdf_placeholder(file_name: str, readable: bool = True) -> str:
    if not readable:
        return f"PDF Document: {file_name}"
    return (
        f"PDF Document: {file_name}\n\n"
        "This is a PDF document. Please extract any client/patient information "
        "you can identify from the filename and context."
    )


# ============================================================================
# Profile Merging
# ============================================================================

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (dict, list)):
        return len(value) == 0
    return False


def merge_client_data(existing: Dict[str, Any], new_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge a newly extracted profile into an existing one.

    Top level is a shallow merge; 'address' and 'customFields' merge key by
    key. Non-empty new values override; empty/None values never overwrite.
    """
    merged = dict(existing)
    for key, value in new_data.items():
        if _is_blank(value):
            continue
        if key in NESTED_MERGE_KEYS and isinstance(value, dict):
            nested = dict(existing.get(key) or {})
            nested.update({k: v for k, v in value.items() if not _is_blank(v)})
            merged[key] = nested
        else:
            merged[key] = value
    return merged


def _build_extraction_prompt(text: str, existing_profile: Optional[Dict[str, Any]]) -> str:
    existing_text = ""
    merge_instruction = ""
    if existing_profile:
        existing_text = (
            "\n\nExisting client data to merge with:\n"
            f"{json.dumps(existing_profile, indent=2, default=str)}\n\n"
        )
        merge_instruction = "Merge this new information with the existing data, keeping the most complete/recent information."

    return f"""Extract client/patient information from the following document text.
{existing_text}
Document text:
{text}

Extract and return ONLY a JSON object with these fields (only include fields you find):
{{
  "firstName": "string",
  "lastName": "string",
  "dateOfBirth": "YYYY-MM-DD format",
  "email": "string",
  "phone": "string",
  "address": {{
    "street": "string",
    "city": "string",
    "state": "string",
    "zipCode": "string"
  }},
  "customFields": {{
    "any other relevant information": "as key-value pairs"
  }}
}}

{merge_instruction}

Return ONLY the JSON object, no other text."""


# ============================================================================
# Service
# ============================================================================

class DocumentParserService:
    """Turns documents into partial client profiles."""

    def __init__(self, gemini: GeminiService, files: Optional[FileAccess] = None):
        self.gemini = gemini
        self.files = files or FileAccess()

    async def extract_text(self, file_path: str) -> str:
        """
        Extract plain text from a .txt, .docx/.doc or .pdf file.

        Raises:
            UnsupportedFormatError: For any other extension
            ExtractionError: On I/O or parse failure
        """
        extension = Path(file_path).suffix.lower().lstrip(".")
        if extension not in SUPPORTED_EXTENSIONS:
            raise UnsupportedFormatError(extension, file_path)

        if extension == "pdf":
            return await self._extract_from_pdf(file_path)

        try:
            if extension == "txt":
                return await self.files.read_text(file_path)
            content = await self.files.read_bytes(file_path)
            return await asyncio.to_thread(extract_word_text, content)
        except Exception as e:
            raise ExtractionError(f"Failed to extract text from {Path(file_path).name}: {e}") from e

    async def _extract_from_pdf(self, file_path: str) -> str:
        file_name = Path(file_path).name
        try:
            await self.files.read_bytes(file_path)
        except OSError as e:
            logger.warning(f"Could not read PDF {file_name}, using name-only placeholder: {e}")
            return pdf_placeholder(file_name, readable=False)
        return pdf_placeholder(file_name)

    async def extract_client_data(
        self,
        text: str,
        existing_profile: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Ask the model for a client profile found in `text`, merged into
        `existing_profile` when one is given.

        Raises:
            NotConfiguredError: If the AI service is not configured
            MalformedAIResponseError: If the response holds no parseable JSON object
        """
        if not self.gemini.is_configured():
            raise NotConfiguredError("AI service not configured. Please set up Gemini API key.")

        prompt = _build_extraction_prompt(text, existing_profile)
        response_text = await self.gemini.generate_content(prompt, expect_json=True)
        extracted = extract_json_object(response_text)
        logger.info(f"Extracted {len(extracted)} top-level fields from document text")

        if existing_profile:
            return merge_client_data(existing_profile, extracted)
        return extracted

    async def extract_client_from_multiple_files(self, file_paths: List[str]) -> Dict[str, Any]:
        """
        Fold extraction over files in order. A failing file is logged and
        skipped; the profile accumulated so far carries on to the next file.
        """
        client_data: Dict[str, Any] = {"customFields": {}}

        for file_path in file_paths:
            try:
                text = await self.extract_text(file_path)
                client_data = await self.extract_client_data(text, client_data)
                logger.info(f"Processed {Path(file_path).name}")
            except Exception as e:
                logger.error(f"Failed to process {file_path}: {e}")

        return client_data

    def build_client(self, profile: Dict[str, Any], source: str = "documents") -> Client:
        """
        Validate an accumulated profile into a canonical Client.

        Raises:
            ValidationError: Listing every violated constraint
        """
        client_data = dict(profile)
        client_data["id"] = client_data.get("id") or generate_client_id()
        client_data.setdefault("firstName", "")
        client_data.setdefault("lastName", "")
        client_data["customFields"] = client_data.get("customFields") or {}
        client_data["metadata"] = {"source": source, "lastUpdated": datetime.now()}

        validation = validate_data(Client, client_data)
        if not validation.success:
            raise ValidationError("Extracted client data is invalid", validation.result.errors)
        return validation.data
