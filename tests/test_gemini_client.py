"""
Tests for the Gemini service: response parsing, fallbacks and key handling.
"""

import json

import pytest

import gemini_client
from conftest import StubGemini
from errors import MalformedAIResponseError, NotConfiguredError
from gemini_client import AI_FALLBACK_CONFIDENCE, GeminiService, extract_json_object, repair_truncated_json
from schemas import FormField
from secure_store import SecureStore


class FakeGenaiClient:
    def __init__(self, api_key=None):
        self.api_key = api_key


@pytest.fixture
def no_env_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.setattr(gemini_client.genai, "Client", FakeGenaiClient)


class TestExtractJsonObject:

    def test_object_inside_prose(self):
        text = 'Sure! Here it is:\n```json\n{"a": 1, "b": [1, 2,],}\n```\nAnything else?'
        assert extract_json_object(text) == {"a": 1, "b": [1, 2]}

    def test_truncated_object_is_repaired(self):
        assert extract_json_object('{"a": 1, "b": "cut off mid-str') == {"a": 1}

    def test_no_json(self):
        with pytest.raises(MalformedAIResponseError):
            extract_json_object("no braces here")

    def test_unparseable(self):
        with pytest.raises(MalformedAIResponseError):
            extract_json_object("{this is not json}")

    def test_repair_noop_when_balanced(self):
        assert repair_truncated_json('{"a": 1}') is None


class TestSuggestFieldMapping:

    @pytest.mark.asyncio
    async def test_parses_suggestion(self):
        gemini = StubGemini([json.dumps({
            "suggestedField": "address.city",
            "confidence": 0.92,
            "reasoning": "City of residence",
            "alternatives": [{"field": f"x{i}", "confidence": 0.1} for i in range(4)],
        })])

        suggestion = await gemini.suggest_field_mapping("Town", "", ["firstName", "address.city"])

        assert suggestion.suggested_field == "address.city"
        assert suggestion.confidence == 0.92
        assert len(suggestion.alternatives) == 3
        assert '"Town"' in gemini.prompts[0]
        assert "firstName, address.city" in gemini.prompts[0]

    @pytest.mark.asyncio
    async def test_api_failure_falls_back(self):
        gemini = StubGemini([RuntimeError("503")])

        suggestion = await gemini.suggest_field_mapping("Town", "", ["firstName", "address.city"])

        assert suggestion.suggested_field == "firstName"
        assert suggestion.confidence == AI_FALLBACK_CONFIDENCE
        assert suggestion.alternatives == []

    @pytest.mark.asyncio
    async def test_malformed_response_falls_back_to_empty_path(self):
        gemini = StubGemini(["no idea"])
        suggestion = await gemini.suggest_field_mapping("Town", "", [])
        assert suggestion.suggested_field == ""
        assert suggestion.confidence == AI_FALLBACK_CONFIDENCE

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with pytest.raises(NotConfiguredError):
            await GeminiService().suggest_field_mapping("Town", "", ["firstName"])


class TestOtherPrompts:

    @pytest.mark.asyncio
    async def test_interpret_field_purpose(self):
        gemini = StubGemini([json.dumps({
            "purpose": "Collect date of birth",
            "expectedDataType": "date",
            "suggestedFormat": "MM/DD/YYYY",
            "confidence": 0.9,
        })])
        interpretation = await gemini.interpret_field_purpose("DOB", "Date of Birth:")
        assert interpretation.expected_data_type == "date"

    @pytest.mark.asyncio
    async def test_interpret_fallback(self):
        interpretation = await StubGemini([ValueError("boom")]).interpret_field_purpose("DOB", "")
        assert interpretation.purpose == "Unknown"
        assert interpretation.expected_data_type == "string"
        assert interpretation.confidence == AI_FALLBACK_CONFIDENCE

    @pytest.mark.asyncio
    async def test_validate_mapping_clamps_and_falls_back(self):
        field = FormField(id="field_0", name="City", type="text")
        assert await StubGemini(["0.8"]).validate_mapping(field, "address.city", "Austin") == 0.8
        assert await StubGemini(["1.7"]).validate_mapping(field, "address.city", "Austin") == 1.0
        assert await StubGemini(["maybe"]).validate_mapping(field, "address.city", "Austin") == 0.5
        assert await GeminiService().validate_mapping(field, "address.city", "Austin") == 0.5


class TestInitialize:

    @pytest.mark.asyncio
    async def test_explicit_key_wins(self, no_env_key, tmp_path):
        store = SecureStore(tmp_path / "secure.json")
        await store.set_secure_value("gemini-api-key", "stored-key")
        service = GeminiService(store)

        await service.initialize("explicit-key")

        assert service.is_configured()
        assert service.get_api_key() == "explicit-key"

    @pytest.mark.asyncio
    async def test_secure_store_before_environment(self, no_env_key, monkeypatch, tmp_path):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        store = SecureStore(tmp_path / "secure.json")
        await store.set_secure_value("gemini-api-key", "stored-key")
        service = GeminiService(store)

        await service.initialize()

        assert service.get_api_key() == "stored-key"

    @pytest.mark.asyncio
    async def test_environment_fallback(self, no_env_key, monkeypatch, tmp_path):
        monkeypatch.setenv("GOOGLE_API_KEY", "google-key")
        service = GeminiService(SecureStore(tmp_path / "secure.json"))
        await service.initialize()
        assert service.get_api_key() == "google-key"

    @pytest.mark.asyncio
    async def test_no_key(self, no_env_key, tmp_path):
        service = GeminiService(SecureStore(tmp_path / "secure.json"))
        with pytest.raises(NotConfiguredError):
            await service.initialize()
        assert not service.is_configured()

    @pytest.mark.asyncio
    async def test_set_and_clear_api_key(self, no_env_key, tmp_path):
        store = SecureStore(tmp_path / "secure.json")
        service = GeminiService(store)

        await service.set_api_key("new-key")
        assert await store.get_secure_value("gemini-api-key") == "new-key"
        assert service.is_configured()

        await service.clear_api_key()
        assert await store.get_secure_value("gemini-api-key") is None
        assert not service.is_configured()

    @pytest.mark.asyncio
    async def test_generate_requires_configuration(self):
        with pytest.raises(NotConfiguredError):
            await GeminiService().generate_content("hello")
