"""
GED File Storage — Local cache and durable server copies of document files.

Layout:
    <local_cache_dir>/<code>.<ext>            working copy
    <server_root>/<year>/<code>.<ext>         durable copy (server_path)

The core never reads file bytes itself: it asks this collaborator for a
hash, a copy, or an existence check. Every OS failure surfaces as
GedStorageError with the original exception chained.
"""

from __future__ import annotations

import hashlib
import logging
import mimetypes
import os
import shutil
from pathlib import Path
from typing import Optional, Union

from ged.engine.config import StorageConfig
from ged.engine.errors import GedStorageError, GedValidationError

logger = logging.getLogger("ged.documents.storage")

PathLike = Union[str, Path]

_CHUNK_SIZE = 8192


class FileStorage:
    """
    File storage collaborator used by DocumentStore.

    Instantiated once per process from StorageConfig and injected into the
    services.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        self._config = config or StorageConfig()
        self._cache_dir = Path(self._config.local_cache_dir)
        self._server_root = Path(self._config.server_root)

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @property
    def server_root(self) -> Path:
        return self._server_root

    @property
    def server_enabled(self) -> bool:
        return self._config.server_enabled

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------

    def check_source(self, source: PathLike) -> Path:
        """
        The source file must exist and fit the upload limit.

        Raises GedValidationError before anything is copied.
        """
        path = Path(source)
        if not path.is_file():
            raise GedValidationError(
                f"Source file not found: {path}",
                entity="document",
                field="source_file",
            )
        size = path.stat().st_size
        max_bytes = self._config.max_upload_size_mb * 1024 * 1024
        if size > max_bytes:
            raise GedValidationError(
                f"File size ({size / 1024 / 1024:.1f} MB) exceeds "
                f"limit ({self._config.max_upload_size_mb} MB)",
                entity="document",
                field="source_file",
            )
        return path

    # -------------------------------------------------------------------
    # Copies
    # -------------------------------------------------------------------

    def cache_local(self, source: PathLike, code: str, extension: Optional[str]) -> Path:
        """Copy the source into the local cache as <code>.<ext>."""
        target = self._cache_dir / self.file_name(code, extension)
        self._copy(Path(source), target, "cache_local")
        logger.info(f"Cached {source} -> {target}")
        return target

    def store(
        self,
        source: PathLike,
        code: str,
        extension: Optional[str],
        year: int,
    ) -> Optional[str]:
        """
        Copy the source to the durable root. Returns the server path, or None
        when server storage is disabled.
        """
        if not self._config.server_enabled:
            return None
        target = self._server_root / str(year) / self.file_name(code, extension)
        self._copy(Path(source), target, "store")
        logger.info(f"Stored {code} on server: {target}")
        return str(target)

    def retrieve(self, server_path: PathLike, destination: PathLike) -> Path:
        """Copy a durable file back to destination (a file or directory path)."""
        source = Path(server_path)
        if not source.is_file():
            raise GedStorageError(
                f"File not found on server: {source}",
                operation="retrieve",
                path=str(source),
            )
        target = Path(destination)
        if target.is_dir():
            target = target / source.name
        self._copy(source, target, "retrieve")
        return target

    def exists(self, server_path: Optional[PathLike]) -> bool:
        return bool(server_path) and Path(server_path).is_file()

    def delete(self, path: Optional[PathLike]) -> bool:
        """Remove a stored file. False if it was already gone."""
        if not path:
            return False
        p = Path(path)
        try:
            if not p.exists():
                return False
            p.unlink()
        except OSError as e:
            raise GedStorageError(
                f"Failed to delete {p}: {e}",
                operation="delete",
                path=str(p),
            ) from e
        logger.info(f"Deleted file: {p}")
        return True

    # -------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------

    @staticmethod
    def compute_hash(path: PathLike) -> str:
        """SHA-256 hex digest, read in chunks."""
        digest = hashlib.sha256()
        try:
            with open(path, "rb") as f:
                while True:
                    chunk = f.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    digest.update(chunk)
        except OSError as e:
            raise GedStorageError(
                f"Cannot hash {path}: {e}",
                operation="compute_hash",
                path=str(path),
            ) from e
        return digest.hexdigest()

    @staticmethod
    def detect_mime_type(filename: PathLike) -> str:
        mime, _ = mimetypes.guess_type(str(filename))
        return mime or "application/octet-stream"

    @staticmethod
    def extension_of(filename: PathLike) -> str:
        """Lowercase extension without the dot ("" when none)."""
        return os.path.splitext(str(filename))[1].lstrip(".").lower()

    @staticmethod
    def file_name(code: str, extension: Optional[str]) -> str:
        return f"{code}.{extension}" if extension else code

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    @staticmethod
    def _copy(source: Path, target: Path, operation: str) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as e:
            logger.error(f"{operation} failed for {source} -> {target}: {e}")
            raise GedStorageError(
                f"Cannot copy {source.name}: {e}",
                operation=operation,
                path=str(target),
            ) from e
