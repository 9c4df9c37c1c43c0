from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import json
import os
from pathlib import Path
import tempfile
from typing import Any, TextIO

from loguru import logger

JSONType = Any

__all__ = ["JsonStore", "PersistenceWriteError"]


class PersistenceWriteError(Exception):
    """A durable write did not complete; the previous file is left intact."""


class JsonStore:
    """
    Flat directory of JSON documents with atomic replace semantics.

    - Each name maps to one file directly under ``base_dir``.
    - Writes go to a temp file in the same directory, then ``os.replace()``.
    - Reads never raise: a missing or corrupt file yields the caller's default.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir).expanduser().resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def read_json(self, name: str, default: JSONType = None) -> JSONType:
        path = self.path_for(name)
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.bind(file=str(path)).warning("Could not read {}: {}", path, exc)
            return default

    def write_json(self, name: str, value: JSONType) -> None:
        try:
            serialized = json.dumps(value, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise PersistenceWriteError(f"Cannot serialize {name!r}: {exc}") from exc
        try:
            with self._atomic_writer(name) as tmp_file:
                tmp_file.write(serialized)
        except OSError as exc:
            raise PersistenceWriteError(
                f"Failed to write {self.path_for(name)}: {exc}"
            ) from exc

    def list_names(self, pattern: str = "*.json") -> list[str]:
        """Names of documents matching ``pattern``, sorted; temp files excluded."""
        return sorted(
            path.name
            for path in self.base_dir.glob(pattern)
            if path.is_file() and not path.name.startswith(".")
        )

    def remove(self, name: str) -> None:
        self.path_for(name).unlink(missing_ok=True)

    def path_for(self, name: str) -> Path:
        self._validate_name(name)
        return self.base_dir / name

    @staticmethod
    def _validate_name(name: str) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("name must be a non-empty string")
        if ".." in name or os.sep in name or "/" in name or "\\" in name:
            raise ValueError("name contains forbidden path components")

    @contextmanager
    def _atomic_writer(self, name: str) -> Iterator[TextIO]:
        final_path = self.path_for(name)
        tmp_file = tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            delete=False,
            dir=str(final_path.parent),
            prefix=f".{name}.",
            suffix=".tmp",
        )
        try:
            try:
                yield tmp_file
            finally:
                try:
                    tmp_file.flush()
                    os.fsync(tmp_file.fileno())
                finally:
                    tmp_file.close()

            os.replace(tmp_file.name, final_path)
        except BaseException:
            try:
                if os.path.exists(tmp_file.name):
                    os.unlink(tmp_file.name)
            except OSError:
                pass
            raise
