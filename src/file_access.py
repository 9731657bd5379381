"""
File access collaborator: async reads/writes plus file and directory pickers.

The pickers are injected by whatever front end hosts the core (a dialog, a
prompt, a fixed path). With no chooser injected, selection returns None.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

# Logger Setup
logger = logging.getLogger("file_access")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

# (display name, extensions) pairs, e.g. ("PDF Files", ["pdf"])
FileFilter = Tuple[str, List[str]]
FileChooser = Callable[[Sequence[FileFilter]], Optional[str]]
DirectoryChooser = Callable[[], Optional[str]]


class FileAccess:
    """Local file system access. All operations suspend only the caller."""

    def __init__(
        self,
        file_chooser: Optional[FileChooser] = None,
        directory_chooser: Optional[DirectoryChooser] = None,
    ):
        self.file_chooser = file_chooser
        self.directory_chooser = directory_chooser

    async def read_bytes(self, path: str) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)

    async def read_text(self, path: str, encoding: str = "utf-8") -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding)

    async def write_bytes(self, path: str, data: bytes) -> None:
        """Write bytes, creating parent directories as needed."""
        def _write() -> None:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug(f"Wrote {len(data)} bytes to {path}")

    async def select_file(self, filters: Sequence[FileFilter] = ()) -> Optional[str]:
        if self.file_chooser is None:
            return None
        return await asyncio.to_thread(self.file_chooser, filters)

    async def select_directory(self) -> Optional[str]:
        if self.directory_chooser is None:
            return None
        return await asyncio.to_thread(self.directory_chooser)
