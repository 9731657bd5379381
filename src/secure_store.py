"""
Opaque key-value store for secrets (currently only the Gemini API key).

Values are kept as 'secure.<key>' entries in a JSON file readable only by
the owner. The location comes from FORM_ASSISTANT_HOME.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

# Logger Setup
logger = logging.getLogger("secure_store")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

DEFAULT_HOME = Path.home() / ".form_assistant"
STORE_FILENAME = "secure.json"
KEY_PREFIX = "secure."


def default_store_path() -> Path:
    home = os.getenv("FORM_ASSISTANT_HOME")
    return (Path(home) if home else DEFAULT_HOME) / STORE_FILENAME


class SecureStore:
    """JSON-file backed secret storage."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else default_store_path()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Secure store at {self.path} unreadable, treating as empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    async def get_secure_value(self, key: str) -> Optional[str]:
        data = await asyncio.to_thread(self._load)
        return data.get(f"{KEY_PREFIX}{key}")

    async def set_secure_value(self, key: str, value: str) -> None:
        def _set() -> None:
            data = self._load()
            data[f"{KEY_PREFIX}{key}"] = value
            self._save(data)

        await asyncio.to_thread(_set)
        logger.info(f"Stored secure value '{key}'")

    async def delete_secure_value(self, key: str) -> None:
        def _delete() -> None:
            data = self._load()
            if data.pop(f"{KEY_PREFIX}{key}", None) is not None:
                self._save(data)

        await asyncio.to_thread(_delete)
        logger.info(f"Deleted secure value '{key}'")
