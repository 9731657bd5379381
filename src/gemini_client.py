"""
Gemini language-model service for client-data extraction and field mapping.
API key comes from an explicit argument, the secure store, or src/.env.
"""

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from google import genai
from google.genai import types

from errors import MalformedAIResponseError, NotConfiguredError
from schemas import FieldInterpretation, FormField, MappingSuggestion
from secure_store import SecureStore

# Load API key from .env in same directory
load_dotenv(Path(__file__).parent / ".env")

GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_MAX_OUTPUT_TOKENS = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "8192"))
API_KEY_NAME = "gemini-api-key"

AI_FALLBACK_CONFIDENCE = 0.1
DEFAULT_VALIDATION_SCORE = 0.5

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")

# Logger Setup
logger = logging.getLogger("gemini_client")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)


# ============================================================================
# Response Parsing
# ============================================================================

def repair_truncated_json(json_text: str) -> Optional[str]:
    """
    Attempt to repair truncated JSON by adding missing closing brackets.

    This handles common LLM truncation where the output is cut off mid-JSON.
    """
    if not json_text:
        return None

    open_braces = json_text.count('{')
    close_braces = json_text.count('}')
    open_brackets = json_text.count('[')
    close_brackets = json_text.count(']')

    if open_braces == close_braces and open_brackets == close_brackets:
        return None

    repaired = json_text.rstrip()

    # Drop a trailing comma and incomplete trailing key/value pairs
    repaired = re.sub(r',\s*$', '', repaired)
    repaired = re.sub(r',?\s*"[^"]*":\s*"[^"]*$', '', repaired)
    repaired = re.sub(r',?\s*"[^"]*":\s*$', '', repaired)
    repaired = re.sub(r',?\s*"[^"]*$', '', repaired)

    missing_brackets = repaired.count('[') - repaired.count(']')
    missing_braces = repaired.count('{') - repaired.count('}')

    if missing_brackets > 0:
        repaired += ']' * missing_brackets
    if missing_braces > 0:
        repaired += '}' * missing_braces

    logger.info(f"JSON repair: added {max(missing_brackets, 0)} ']' and {max(missing_braces, 0)} '}}'")
    return repaired


def extract_json_object(response_text: str) -> Dict[str, Any]:
    """
    Pull the first JSON object out of a model's text response.

    Code fences and surrounding prose are ignored, trailing commas removed,
    and truncated output repaired when possible.

    Raises:
        MalformedAIResponseError: No JSON object found, or it does not parse
    """
    if not response_text or "{" not in response_text:
        raise MalformedAIResponseError("No valid JSON in response")

    match = JSON_OBJECT_PATTERN.search(response_text)
    json_text = match.group(0) if match else response_text[response_text.index("{"):]
    json_text = re.sub(r',\s*([\}\]])', r'\1', json_text)

    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse failed, attempting repair: {e}")
        repaired = repair_truncated_json(json_text)
        if not repaired:
            raise MalformedAIResponseError(f"Could not parse JSON in response: {e}") from e
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError as e2:
            logger.error(f"JSON repair also failed: {e2}")
            raise MalformedAIResponseError(f"Could not parse JSON in response: {e2}") from e2

    if not isinstance(data, dict):
        raise MalformedAIResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _build_config(model: str, expect_json: bool) -> types.GenerateContentConfig:
    config = types.GenerateContentConfig()
    config.max_output_tokens = GEMINI_MAX_OUTPUT_TOKENS

    # Gemini 3 uses thinking_level, Gemini 2.5 uses thinking_budget
    if "gemini-3" in model:
        config.thinking_config = types.ThinkingConfig(thinking_level="MINIMAL")
    elif "gemini-2.5" in model:
        config.thinking_config = types.ThinkingConfig(thinking_budget=0)

    if expect_json:
        config.response_mime_type = "application/json"
    return config


# ============================================================================
# Prompts
# ============================================================================

def _build_mapping_prompt(field_name: str, context: str, available_paths: List[str]) -> str:
    return f"""You are helping map PDF form fields to client data fields.

PDF Field Name: "{field_name}"
Context: {context}

Available client data fields:
{', '.join(available_paths)}

Based on the PDF field name and context, suggest which client data field it should map to.
Provide your response in JSON format with:
- suggestedField: the best matching field name
- confidence: a number between 0 and 1
- reasoning: brief explanation
- alternatives: array of up to 3 alternative matches with their confidence scores

Example response:
{{
  "suggestedField": "firstName",
  "confidence": 0.95,
  "reasoning": "Field name clearly indicates first name",
  "alternatives": [
    {{"field": "lastName", "confidence": 0.3}}
  ]
}}"""


def _build_interpretation_prompt(field_name: str, surrounding_text: str) -> str:
    return f"""Analyze this PDF form field and determine its purpose.

Field Name: "{field_name}"
Surrounding Text: "{surrounding_text}"

Provide your response in JSON format with:
- purpose: what this field is for (e.g., "Collect user's first name")
- expectedDataType: the type of data (e.g., "string", "date", "number", "email", "phone")
- suggestedFormat: how the data should be formatted (e.g., "MM/DD/YYYY", "(XXX) XXX-XXXX")
- confidence: a number between 0 and 1

Example response:
{{
  "purpose": "Collect user's date of birth",
  "expectedDataType": "date",
  "suggestedFormat": "MM/DD/YYYY",
  "confidence": 0.9
}}"""


# ============================================================================
# Service
# ============================================================================

class GeminiService:
    """Async wrapper around the google-genai client."""

    def __init__(self, secure_store: Optional[SecureStore] = None, model: Optional[str] = None):
        self.secure_store = secure_store
        self.model = model or GEMINI_MODEL
        self._client: Optional[genai.Client] = None
        self._api_key: Optional[str] = None

    async def initialize(self, api_key: Optional[str] = None) -> None:
        """
        Configure the client. Key preference: argument, secure store, environment.

        Raises:
            NotConfiguredError: If no key can be found
        """
        key = api_key
        if not key and self.secure_store is not None:
            key = await self.secure_store.get_secure_value(API_KEY_NAME)
        if not key:
            key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")

        if not key or "YOUR_GEMINI_API_KEY" in key:
            logger.error("GEMINI_API_KEY is not set. Cannot initialize Gemini.")
            raise NotConfiguredError("Gemini initialization failed: No API key provided")

        self._client = genai.Client(api_key=key)
        self._api_key = key
        logger.info(f"[Gemini] Initialized with model {self.model}")

    def is_configured(self) -> bool:
        return self._client is not None

    async def set_api_key(self, key: str) -> None:
        """Persist the key in the secure store, then initialize with it."""
        if self.secure_store is not None:
            await self.secure_store.set_secure_value(API_KEY_NAME, key)
        await self.initialize(key)

    async def clear_api_key(self) -> None:
        if self.secure_store is not None:
            await self.secure_store.delete_secure_value(API_KEY_NAME)
        self._client = None
        self._api_key = None
        logger.info("[Gemini] API key cleared")

    def get_api_key(self) -> Optional[str]:
        return self._api_key

    async def generate_content(self, prompt: str, expect_json: bool = False) -> str:
        """
        Send a prompt and return the response text.

        Raises:
            NotConfiguredError: If initialize() has not succeeded
        """
        if self._client is None:
            raise NotConfiguredError("AI service not configured. Please set up Gemini API key.")

        prompt_preview = prompt[:200] + "..." if len(prompt) > 200 else prompt
        logger.info(f"[Gemini] Calling {self.model}, prompt length: {len(prompt):,} chars")
        logger.debug(f"[Gemini] Prompt preview: {prompt_preview}")

        call_start = time.time()
        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=_build_config(self.model, expect_json),
        )
        logger.info(f"[Gemini] Response received in {time.time() - call_start:.1f}s")

        usage = getattr(response, "usage_metadata", None)
        if usage is not None:
            input_tokens = getattr(usage, "prompt_token_count", "N/A")
            output_tokens = getattr(usage, "candidates_token_count", "N/A")
            logger.info(f"[Gemini] Tokens used - Input: {input_tokens}, Output: {output_tokens}")

        return response.text or ""

    async def suggest_field_mapping(
        self,
        field_name: str,
        context: str,
        available_paths: List[str],
    ) -> MappingSuggestion:
        """
        Ask the model which client-data path a PDF field should map to.

        Any failure after configuration (API error, malformed or missing JSON)
        returns a low-confidence fallback instead of raising.

        Raises:
            NotConfiguredError: If the service is not initialized
        """
        if not self.is_configured():
            raise NotConfiguredError("Gemini service not initialized")

        prompt = _build_mapping_prompt(field_name, context, available_paths)
        try:
            response_text = await self.generate_content(prompt, expect_json=True)
            return MappingSuggestion.model_validate(extract_json_object(response_text))
        except Exception as e:
            logger.warning(f"AI mapping suggestion failed for '{field_name}', using fallback: {e}")
            return MappingSuggestion(
                suggested_field=available_paths[0] if available_paths else "",
                confidence=AI_FALLBACK_CONFIDENCE,
                reasoning="AI service unavailable, showing first available field",
                alternatives=[],
            )

    async def interpret_field_purpose(self, field_name: str, surrounding_text: str) -> FieldInterpretation:
        if not self.is_configured():
            raise NotConfiguredError("Gemini service not initialized")

        prompt = _build_interpretation_prompt(field_name, surrounding_text)
        try:
            response_text = await self.generate_content(prompt, expect_json=True)
            return FieldInterpretation.model_validate(extract_json_object(response_text))
        except Exception as e:
            logger.warning(f"AI field interpretation failed for '{field_name}': {e}")
            return FieldInterpretation(
                purpose="Unknown",
                expected_data_type="string",
                suggested_format="",
                confidence=AI_FALLBACK_CONFIDENCE,
            )

    async def validate_mapping(self, field: FormField, client_path: str, sample_value: Any) -> float:
        """Score how plausible a field-to-path mapping is, clamped to [0, 1]."""
        if not self.is_configured():
            return DEFAULT_VALIDATION_SCORE

        prompt = f"""Validate if this field mapping makes sense.

PDF Field: "{field.name}" (type: {field.type})
Mapped to Client Field: "{client_path}"
Sample Value: "{sample_value}"

Does this mapping make sense? Respond with a confidence score between 0 and 1.
Only respond with the number, nothing else."""

        try:
            response_text = await self.generate_content(prompt)
            score = float(response_text.strip())
        except Exception as e:
            logger.warning(f"AI mapping validation failed for '{field.name}': {e}")
            return DEFAULT_VALIDATION_SCORE

        if score != score:  # NaN
            return DEFAULT_VALIDATION_SCORE
        return max(0.0, min(1.0, score))
