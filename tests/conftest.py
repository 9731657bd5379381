"""
Shared fixtures: a canned-response Gemini stub, AcroForm PDF builders and
sample records.
"""

import io
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest
from pypdf import PdfReader, PdfWriter
from pypdf.generic import ArrayObject, DictionaryObject, NameObject, TextStringObject
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from gemini_client import GeminiService
from schemas import Address, Client, ClientMetadata


class StubGemini(GeminiService):
    """GeminiService that answers from a queue instead of calling the API."""

    def __init__(self, responses: Optional[Sequence[Union[str, Exception]]] = None, configured: bool = True):
        super().__init__()
        self.responses = list(responses or [])
        self.prompts: List[str] = []
        if configured:
            self._client = object()

    async def generate_content(self, prompt: str, expect_json: bool = False) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if self.responses else "{}"
        if isinstance(response, Exception):
            raise response
        return response


FieldSpec = Tuple  # ("text", name) | ("checkbox", name[, checked]) | ("choice", name, options) | ("radio", name, values)


def build_form_pdf(path: Path, fields: Sequence[FieldSpec]) -> Path:
    """Write a one-page AcroForm PDF with the given fields, top to bottom."""
    c = canvas.Canvas(str(path), pagesize=letter)
    form = c.acroForm
    y = 700
    for spec in fields:
        kind, name = spec[0], spec[1]
        if kind == "text":
            form.textfield(name=name, tooltip=name, x=72, y=y, width=200, height=20)
        elif kind == "checkbox":
            checked = len(spec) > 2 and bool(spec[2])
            form.checkbox(name=name, tooltip=name, x=72, y=y, size=20, buttonStyle="check", checked=checked)
        elif kind == "choice":
            options = list(spec[2])
            form.choice(name=name, tooltip=name, value=options[0], options=options, x=72, y=y, width=200, height=20)
        elif kind == "radio":
            for i, value in enumerate(spec[2]):
                form.radio(name=name, tooltip=name, value=value, selected=False, x=72 + i * 40, y=y, size=20)
        y -= 40
    c.showPage()
    c.save()
    return path


def nest_fields(path: Path, parent_name: str, child_names: Sequence[str]) -> Path:
    """Move top-level fields under a new non-terminal parent field, in place."""
    writer = PdfWriter(clone_from=str(path))
    acro_form = writer._root_object["/AcroForm"]
    parent = DictionaryObject({
        NameObject("/T"): TextStringObject(parent_name),
        NameObject("/Kids"): ArrayObject(),
    })
    parent_ref = writer._add_object(parent)

    top_level = ArrayObject()
    for ref in acro_form["/Fields"]:
        field = ref.get_object()
        if field.get("/T") in child_names:
            field[NameObject("/Parent")] = parent_ref
            parent["/Kids"].append(ref)
        else:
            top_level.append(ref)
    top_level.append(parent_ref)
    acro_form[NameObject("/Fields")] = top_level

    with open(path, "wb") as f:
        writer.write(f)
    return path


def widget_states(pdf_bytes: bytes) -> Dict[str, str]:
    """Appearance state (/AS) of every widget on the first page, by partial name."""
    states = {}
    for annot in PdfReader(io.BytesIO(pdf_bytes)).pages[0].get("/Annots", []):
        widget = annot.get_object()
        if "/AS" in widget and "/T" in widget:
            states[str(widget["/T"])] = str(widget["/AS"])
    return states


@pytest.fixture
def stub_gemini():
    return StubGemini()


@pytest.fixture
def intake_pdf(tmp_path):
    return build_form_pdf(
        tmp_path / "Intake Form.pdf",
        [
            ("text", "first_name"),
            ("text", "last_name"),
            ("text", "email"),
            ("checkbox", "consent"),
            ("choice", "state", ["CA", "NY", "TX"]),
            ("radio", "gender", ["male", "female"]),
        ],
    )


@pytest.fixture
def simple_pdf(tmp_path):
    return build_form_pdf(
        tmp_path / "Consent Agreement.pdf",
        [
            ("text", "First Name"),
            ("text", "Last Name"),
            ("text", "Phone"),
            ("text", "Notes"),
            ("checkbox", "consent"),
        ],
    )


@pytest.fixture
def sample_client():
    return Client(
        id="client_1",
        first_name="Jane",
        last_name="Doe",
        date_of_birth="1990-03-15",
        email="jane@x.com",
        phone="5551234567",
        address=Address(street="1 Main St", city="Austin", state="TX", zip_code="78701", country="USA"),
        custom_fields={"caseNumber": "A-17", "consent": True},
        metadata=ClientMetadata(source="test", last_updated=datetime(2024, 1, 1, 9, 30)),
    )


@pytest.fixture
def choices_pdf(tmp_path):
    return build_form_pdf(
        tmp_path / "Enrollment.pdf",
        [
            ("text", "First Name"),
            ("checkbox", "consent"),
            ("checkbox", "opt_out", True),
            ("choice", "State", ["CA", "NY", "TX"]),
            ("text", "Notes"),
        ],
    )
