"""
Tests for the small collaborators: record store, fallback chain, secure store,
file access and session wiring.
"""

import json
import os
import stat

import pytest

from conftest import StubGemini
from fallback import FallbackExhausted, try_in_order
from file_access import FileAccess
from record_store import RecordStore
from secure_store import SecureStore
from session import AssistantSession


class Record:
    def __init__(self, record_id, label=""):
        self.id = record_id
        self.label = label


class TestRecordStore:

    def test_add_overwrites_by_id(self):
        store = RecordStore()
        store.add(Record("a", "first"))
        store.add(Record("a", "second"))
        assert len(store) == 1
        assert store.get("a").label == "second"

    def test_remove_and_clear(self):
        store = RecordStore()
        store.add(Record("a"))
        store.add(Record("b"))
        assert "a" in store
        assert store.remove("a")
        assert not store.remove("a")
        assert [r.id for r in store] == ["b"]
        store.clear()
        assert store.all() == []


class TestTryInOrder:

    def test_first_success_wins(self):
        calls = []

        def attempt(option):
            calls.append(option)
            if option < 2:
                raise ValueError(f"too small: {option}")
            return option * 10

        assert try_in_order([0, 1, 2, 3], attempt) == (20, 2)
        assert calls == [0, 1, 2]

    def test_exhausted_keeps_last_error(self):
        def attempt(option):
            raise RuntimeError(option)

        with pytest.raises(FallbackExhausted) as exc_info:
            try_in_order(["a", "b"], attempt)

        assert [option for option, _ in exc_info.value.errors] == ["a", "b"]
        assert str(exc_info.value.last_error) == "b"

    def test_empty_options(self):
        with pytest.raises(FallbackExhausted) as exc_info:
            try_in_order([], lambda option: option)
        assert exc_info.value.last_error is None


class TestSecureStore:

    @pytest.mark.asyncio
    async def test_round_trip_and_permissions(self, tmp_path):
        path = tmp_path / "home" / "secure.json"
        store = SecureStore(path)

        await store.set_secure_value("gemini-api-key", "abc123")

        assert await store.get_secure_value("gemini-api-key") == "abc123"
        assert json.loads(path.read_text()) == {"secure.gemini-api-key": "abc123"}
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

        await store.delete_secure_value("gemini-api-key")
        assert await store.get_secure_value("gemini-api-key") is None

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "secure.json"
        path.write_text("{broken")
        assert await SecureStore(path).get_secure_value("gemini-api-key") is None

    def test_location_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FORM_ASSISTANT_HOME", str(tmp_path))
        assert SecureStore().path == tmp_path / "secure.json"


class TestFileAccess:

    @pytest.mark.asyncio
    async def test_write_creates_parents(self, tmp_path):
        files = FileAccess()
        target = tmp_path / "a" / "b" / "out.bin"
        await files.write_bytes(str(target), b"data")
        assert await files.read_bytes(str(target)) == b"data"

    @pytest.mark.asyncio
    async def test_choosers(self):
        seen = []

        def choose_file(filters):
            seen.append(filters)
            return "/tmp/clients.csv"

        files = FileAccess(file_chooser=choose_file, directory_chooser=lambda: "/tmp/out")

        assert await files.select_file([("Spreadsheets", ["csv", "xlsx"])]) == "/tmp/clients.csv"
        assert seen == [[("Spreadsheets", ["csv", "xlsx"])]]
        assert await files.select_directory() == "/tmp/out"
        assert await FileAccess().select_directory() is None


class TestAssistantSession:

    @pytest.mark.asyncio
    async def test_end_to_end(self, tmp_path, simple_pdf):
        clients_file = tmp_path / "clients.csv"
        clients_file.write_text("First Name,Last Name,Phone\nJane,Doe,5551234567\n")
        output_dir = tmp_path / "out"

        session = AssistantSession(
            secure_store=SecureStore(tmp_path / "secure.json"),
            gemini=StubGemini(configured=False),
        )
        clients = await session.load_clients(str(clients_file))
        template = await session.load_template(str(simple_pdf))

        assert template.category == "Consent Forms"
        assert session.templates.get(template.id).category == "Consent Forms"

        path = await session.fill_and_export(
            template.id, clients[0].id, str(output_dir), use_ai=False, organization="by-template"
        )

        assert path.startswith(str(output_dir / "Consent_Agreement"))
        assert os.path.exists(path)

    @pytest.mark.asyncio
    async def test_unknown_ids(self, tmp_path):
        session = AssistantSession(secure_store=SecureStore(tmp_path / "secure.json"), gemini=StubGemini())
        with pytest.raises(KeyError):
            await session.fill_and_export("missing", "missing", str(tmp_path))

    @pytest.mark.asyncio
    async def test_start_without_key(self, monkeypatch, tmp_path):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        session = AssistantSession(secure_store=SecureStore(tmp_path / "secure.json"))
        assert await session.start() is False

    @pytest.mark.asyncio
    async def test_import_client_from_documents(self, tmp_path):
        note = tmp_path / "note.txt"
        note.write_text("Jane Doe, jane@x.com")
        gemini = StubGemini(['{"firstName": "Jane", "lastName": "Doe", "email": "jane@x.com"}'])
        session = AssistantSession(secure_store=SecureStore(tmp_path / "secure.json"), gemini=gemini)

        client = await session.import_client_from_documents([str(note)])

        assert session.clients.get(client.id) is client
        assert client.metadata.source == "documents"
