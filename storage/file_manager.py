# storage/file_manager.py
"""Utility class for asynchronous novel and manifest file operations."""

from __future__ import annotations

import asyncio
import json
import os

import structlog
from config import settings

from models import Manifest, Novel

logger = structlog.get_logger(__name__)


class FileManager:
    """Read and write novel documents and manifests as JSON."""

    def __init__(self, output_dir: str = settings.BASE_OUTPUT_DIR) -> None:
        self.output_dir = output_dir
        os.makedirs(self.output_dir, exist_ok=True)

    def resolve(self, file_path: str) -> str:
        """Relative paths live under the output directory."""
        if os.path.isabs(file_path) or os.path.exists(file_path):
            return file_path
        return os.path.join(self.output_dir, file_path)

    async def load_novel(self, file_path: str) -> Novel:
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, self._read_text_sync, self.resolve(file_path))
        return Novel.model_validate_json(raw)

    async def save_novel(self, novel: Novel, file_path: str) -> None:
        payload = json.dumps(novel.to_json_dict(), ensure_ascii=False, indent=2)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_text_sync, self.resolve(file_path), payload)

    async def save_manifest(self, manifest: Manifest, file_path: str | None = None) -> str:
        path = self.resolve(file_path or settings.MANIFEST_FILE)
        payload = manifest.model_dump_json(by_alias=True, indent=2)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_text_sync, path, payload)
        return path

    def _write_text_sync(self, file_path: str, text: str) -> None:
        directory = os.path.dirname(file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{file_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, file_path)
        logger.debug("Wrote file.", path=file_path, chars=len(text))

    def _read_text_sync(self, file_path: str) -> str:
        """Read the contents of ``file_path`` synchronously.

        Args:
            file_path: Path to the file to read.

        Returns:
            The full text of the file.
        """

        with open(file_path, encoding="utf-8") as f:
            return f.read()
