"""
One working session: the collaborators, the record stores and every service,
wired together. Stores are owned here and shared with the services.
"""

import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from client_data import ClientDataService
from document_parser import DocumentParserService
from errors import NotConfiguredError
from field_mapping import FieldMappingEngine
from file_access import DirectoryChooser, FileAccess, FileChooser
from form_fill import FillResult, FormFillService
from gemini_client import GeminiService
from pdf_template import PDFTemplateService, categorize_template
from record_store import RecordStore
from schemas import Client, PDFTemplate
from secure_store import SecureStore

load_dotenv(Path(__file__).parent / ".env")

# Logger Setup
logger = logging.getLogger("session")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)


class AssistantSession:
    """Client and template stores plus the services that operate on them."""

    def __init__(
        self,
        files: Optional[FileAccess] = None,
        secure_store: Optional[SecureStore] = None,
        gemini: Optional[GeminiService] = None,
        file_chooser: Optional[FileChooser] = None,
        directory_chooser: Optional[DirectoryChooser] = None,
    ):
        self.files = files or FileAccess(file_chooser=file_chooser, directory_chooser=directory_chooser)
        self.secure_store = secure_store or SecureStore()
        self.gemini = gemini or GeminiService(self.secure_store)

        self.clients: RecordStore[Client] = RecordStore()
        self.templates: RecordStore[PDFTemplate] = RecordStore()

        self.client_data = ClientDataService(self.files, self.clients)
        self.templates_service = PDFTemplateService(self.files, self.templates)
        self.documents = DocumentParserService(self.gemini, self.files)
        self.mapping = FieldMappingEngine(self.gemini)
        self.form_fill = FormFillService(self.files, self.mapping)

    async def start(self, api_key: Optional[str] = None) -> bool:
        """Try to configure the AI service. Returns whether it is available."""
        try:
            await self.gemini.initialize(api_key)
        except NotConfiguredError as e:
            logger.warning(f"AI features disabled: {e}")
            return False
        return True

    async def load_clients(self, file_path: str) -> List[Client]:
        return await self.client_data.load_clients_from_file(file_path)

    async def load_template(self, file_path: str) -> PDFTemplate:
        template = await self.templates_service.load_template(file_path)
        template.category = categorize_template(template)
        return template

    async def import_client_from_documents(self, file_paths: List[str]) -> Client:
        """Extract one client from several documents and add it to the client store."""
        profile = await self.documents.extract_client_from_multiple_files(file_paths)
        client = self.documents.build_client(profile)
        self.clients.add(client)
        return client

    async def fill_and_export(
        self,
        template_id: str,
        client_id: str,
        output_directory: Optional[str] = None,
        use_ai: bool = True,
        flatten: bool = False,
        organization: str = "none",
    ) -> str:
        """
        Fill one stored template for one stored client and export it.

        Raises:
            KeyError: If the template or client is not in the session
        """
        template = self.templates.get(template_id)
        if template is None:
            raise KeyError(f"Template not found: {template_id}")
        client = self.clients.get(client_id)
        if client is None:
            raise KeyError(f"Client not found: {client_id}")

        result: FillResult = await self.form_fill.fill_form(template, client, use_ai=use_ai, flatten=flatten)
        return await self.form_fill.export_pdf(
            result.pdf_bytes, client, template, output_directory, organization
        )
