"""
Client Data Ingestion.

Loads client records from JSON, CSV and spreadsheet files, normalizes the many
column-name spellings into the canonical Client shape, and keeps valid records
in the session's client store. Invalid rows are logged and dropped; one bad
row never aborts a load.
"""

import asyncio
import csv
import io
import json
import logging
import re
import time
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import openpyxl
import xlrd

from errors import ExtractionError, UnsupportedFormatError
from file_access import FileAccess
from record_store import RecordStore
from schemas import Client, ValidationResult, validate_data

# Logger Setup
logger = logging.getLogger("client_data")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

SUPPORTED_EXTENSIONS = ("json", "csv", "xlsx", "xls")
DEFAULT_COUNTRY = "USA"

# Canonical field -> normalized aliases (lower-case, separators removed), in priority order
CLIENT_FIELD_ALIASES: Dict[str, List[str]] = {
    "id": ["id", "clientid"],
    "firstName": ["firstname", "fname", "givenname"],
    "lastName": ["lastname", "lname", "surname", "familyname"],
    "dateOfBirth": ["dateofbirth", "dob", "birthdate", "birthday"],
    "email": ["email", "emailaddress"],
    "phone": ["phone", "phonenumber", "telephone", "tel", "mobile", "cellphone"],
}

ADDRESS_FIELD_ALIASES: Dict[str, List[str]] = {
    "street": ["street", "streetaddress", "address", "address1", "addressline1"],
    "city": ["city", "town"],
    "state": ["state", "province"],
    "zipCode": ["zipcode", "zip", "postalcode", "postcode"],
    "country": ["country"],
}

STANDARD_KEYS = frozenset(
    alias
    for aliases in list(CLIENT_FIELD_ALIASES.values()) + list(ADDRESS_FIELD_ALIASES.values())
    for alias in aliases
)


# ============================================================================
# Normalization Helpers
# ============================================================================

def normalize_key(key: Any) -> str:
    """'First Name', 'first_name' and 'FirstName' all normalize to 'firstname'."""
    return re.sub(r"[^a-z0-9]", "", str(key).lower())


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _as_text(value: Any) -> str:
    """Convert a spreadsheet/JSON scalar into the text form used by standard fields."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _first_present(index: Dict[str, List[Any]], aliases: List[str]) -> Optional[str]:
    for alias in aliases:
        for value in index.get(alias, []):
            if not _is_empty(value):
                return _as_text(value)
    return None


def generate_client_id() -> str:
    return f"client_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def extract_custom_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Every key not recognized as a standard client field, with its raw value."""
    return {
        str(key): value
        for key, value in data.items()
        if normalize_key(key) not in STANDARD_KEYS
    }


def normalize_client_row(data: Dict[str, Any], source: str = "file") -> Dict[str, Any]:
    """
    Map a raw row onto the canonical client shape (camelCase keys).

    The first non-empty alias wins. A nested 'address' object is honored
    before flat address columns.
    """
    index: Dict[str, List[Any]] = {}
    nested_address: Dict[str, List[Any]] = {}
    for key, value in data.items():
        normalized = normalize_key(key)
        if normalized == "address" and isinstance(value, dict):
            for sub_key, sub_value in value.items():
                nested_address.setdefault(normalize_key(sub_key), []).append(sub_value)
            continue
        index.setdefault(normalized, []).append(value)

    client_data: Dict[str, Any] = {
        field: _first_present(index, aliases)
        for field, aliases in CLIENT_FIELD_ALIASES.items()
    }
    client_data["id"] = client_data["id"] or generate_client_id()
    client_data["firstName"] = client_data["firstName"] or ""
    client_data["lastName"] = client_data["lastName"] or ""

    address = {}
    for field, aliases in ADDRESS_FIELD_ALIASES.items():
        address[field] = _first_present(nested_address, aliases) or _first_present(index, aliases)
    address["country"] = address["country"] or DEFAULT_COUNTRY
    client_data["address"] = address

    client_data["customFields"] = extract_custom_fields(data)
    client_data["metadata"] = {"source": source, "lastUpdated": datetime.now()}
    return client_data


# ============================================================================
# File Parsers
# ============================================================================

def _decode_text(content: bytes) -> str:
    return content.decode("utf-8-sig")


def parse_json_rows(content: bytes) -> List[Any]:
    data = json.loads(_decode_text(content))
    return data if isinstance(data, list) else [data]


def parse_csv_rows(content: bytes) -> List[Dict[str, Any]]:
    reader = csv.DictReader(io.StringIO(_decode_text(content)))
    rows = []
    for row in reader:
        cleaned = {k: v for k, v in row.items() if k is not None}
        if all(_is_empty(v) for v in cleaned.values()):
            continue
        rows.append(cleaned)
    return rows


def _rows_from_table(header: List[Any], body: List[List[Any]]) -> List[Dict[str, Any]]:
    keys = [None if _is_empty(h) else str(h).strip() for h in header]
    rows = []
    for values in body:
        row = {
            key: value
            for key, value in zip(keys, values)
            if key is not None and not (value is None or value == "")
        }
        if row:
            rows.append(row)
    return rows


def parse_xlsx_rows(content: bytes) -> List[Dict[str, Any]]:
    """First worksheet only; header row supplies the keys."""
    workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        table = [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()
    if not table:
        return []
    return _rows_from_table(table[0], table[1:])


def parse_xls_rows(content: bytes) -> List[Dict[str, Any]]:
    """Legacy .xls via xlrd; first sheet only, date cells converted."""
    book = xlrd.open_workbook(file_contents=content)
    sheet = book.sheet_by_index(0)
    if sheet.nrows == 0:
        return []

    def cell_value(row_idx: int, col_idx: int) -> Any:
        cell = sheet.cell(row_idx, col_idx)
        if cell.ctype == xlrd.XL_CELL_EMPTY:
            return None
        if cell.ctype == xlrd.XL_CELL_DATE:
            return xlrd.xldate_as_datetime(cell.value, book.datemode)
        if cell.ctype == xlrd.XL_CELL_BOOLEAN:
            return bool(cell.value)
        return cell.value

    table = [
        [cell_value(r, c) for c in range(sheet.ncols)]
        for r in range(sheet.nrows)
    ]
    return _rows_from_table(table[0], table[1:])


PARSERS = {
    "json": parse_json_rows,
    "csv": parse_csv_rows,
    "xlsx": parse_xlsx_rows,
    "xls": parse_xls_rows,
}


# ============================================================================
# Service
# ============================================================================

class ClientDataService:
    """Loads and holds canonical client records for a session."""

    def __init__(self, files: Optional[FileAccess] = None, store: Optional[RecordStore[Client]] = None):
        self.files = files or FileAccess()
        self.store: RecordStore[Client] = store if store is not None else RecordStore()

    async def load_clients_from_file(self, file_path: str) -> List[Client]:
        """
        Load clients from a .json, .csv, .xlsx or .xls file.

        Args:
            file_path: Path to the source file

        Returns:
            Valid clients in source-row order (also added to the store)

        Raises:
            UnsupportedFormatError: For any other extension
            ExtractionError: If the file cannot be read or parsed
        """
        extension = Path(file_path).suffix.lower().lstrip(".")
        parser = PARSERS.get(extension)
        if parser is None:
            raise UnsupportedFormatError(extension, file_path)

        try:
            content = await self.files.read_bytes(file_path)
        except OSError as e:
            raise ExtractionError(f"Failed to read file {file_path}: {e}") from e

        try:
            raw_rows = await asyncio.to_thread(parser, content)
        except Exception as e:
            raise ExtractionError(f"Failed to parse {extension.upper()} file {file_path}: {e}") from e

        clients: List[Client] = []
        dropped = 0
        for row_number, raw in enumerate(raw_rows, start=1):
            if not isinstance(raw, dict):
                logger.warning(f"Row {row_number}: Skipped - expected an object, got {type(raw).__name__}")
                dropped += 1
                continue
            client = self.parse_client_data(raw)
            if client is None:
                dropped += 1
                continue
            self.store.add(client)
            clients.append(client)

        logger.info(f"Loaded {len(clients)} clients from {Path(file_path).name} ({dropped} rows dropped)")
        return clients

    def parse_client_data(self, data: Dict[str, Any], source: str = "file") -> Optional[Client]:
        """Normalize and validate one raw row. Returns None if the row is invalid."""
        client_data = normalize_client_row(data, source=source)
        validation = validate_data(Client, client_data)
        if not validation.success:
            logger.warning(f"Client validation failed: {validation.result.errors}")
            return None
        return validation.data

    def validate_client_data(self, client: Any) -> ValidationResult:
        if isinstance(client, Client):
            client = client.model_dump(by_alias=True)
        return validate_data(Client, client).result

    def get_client(self, client_id: str) -> Optional[Client]:
        return self.store.get(client_id)

    def get_all_clients(self) -> List[Client]:
        return self.store.all()

    def add_client(self, client: Client) -> None:
        self.store.add(client)

    def remove_client(self, client_id: str) -> bool:
        return self.store.remove(client_id)

    def clear_clients(self) -> None:
        self.store.clear()
