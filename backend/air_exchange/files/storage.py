"""Blob storage for uploaded files.

Files are stored flat in the upload directory as ``{ms}-{original_name}``.
The blob store knows nothing about rooms; the room registry holds the
records that point at blobs.
"""
import asyncio
import logging
from pathlib import Path
from typing import Callable

from air_exchange.errors import NotFoundError, StorageError, ValidationError
from air_exchange.rooms.schemas import now_ms

logger = logging.getLogger(__name__)


def safe_name(filename: str) -> str:
    """Strip any directory components from a client-supplied filename."""
    name = Path(filename.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return "unnamed"
    return name


class BlobStore:
    """Filesystem-backed storage addressed by generated filenames."""

    def __init__(self, upload_dir: str, clock: Callable[[], int] = now_ms) -> None:
        self.upload_dir = Path(upload_dir)
        self.clock = clock
        self._ensure_upload_dir()

    def _ensure_upload_dir(self) -> None:
        """Ensure the upload directory exists."""
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def _write_new(self, stamp: int, name: str, content: bytes) -> str:
        """Create a blob under the first free name and write *content* to it.

        Names are claimed with exclusive create, so concurrent saves of the
        same name in the same millisecond never share a blob.
        """
        candidate = f"{stamp}-{name}"
        counter = 1
        while True:
            file_path = self.upload_dir / candidate
            try:
                fh = open(file_path, "xb")
            except FileExistsError:
                candidate = f"{stamp}-{counter}-{name}"
                counter += 1
                continue
            try:
                with fh:
                    fh.write(content)
            except OSError:
                file_path.unlink(missing_ok=True)
                raise
            return candidate

    def path_for(self, filename: str) -> Path:
        """Resolve *filename* inside the upload directory.

        Raises:
            ValidationError: If the name escapes the upload directory.
        """
        if safe_name(filename) != filename:
            raise ValidationError(f"Invalid filename: {filename}")
        return self.upload_dir / filename

    def exists(self, filename: str) -> bool:
        try:
            return self.path_for(filename).is_file()
        except ValidationError:
            return False

    async def save(self, original_name: str, content: bytes) -> str:
        """Write *content* to a new blob and return its generated filename.

        The write runs in a worker thread; the returned name is only handed
        back once the bytes are on disk.

        Raises:
            StorageError: If the write fails.
        """
        name = safe_name(original_name)
        try:
            filename = await asyncio.to_thread(self._write_new, self.clock(), name, content)
        except OSError as e:
            logger.error(f"Failed to write blob {name} in {self.upload_dir}: {e}")
            raise StorageError("Upload failed") from e

        logger.info(f"Saved file: {self.upload_dir / filename} ({len(content)} bytes)")
        return filename

    def delete(self, filename: str) -> None:
        """Unlink a blob.

        Raises:
            NotFoundError: If the blob does not exist.
            StorageError: If the unlink fails.
        """
        file_path = self.path_for(filename)
        try:
            file_path.unlink()
        except FileNotFoundError as e:
            raise NotFoundError("File not found") from e
        except OSError as e:
            logger.error(f"Failed to delete blob {file_path}: {e}")
            raise StorageError("Delete file failed") from e
        logger.info(f"Deleted file: {file_path}")

    def discard(self, filename: str) -> bool:
        """Best-effort unlink for background paths; failures are logged, not raised."""
        try:
            self.delete(filename)
        except NotFoundError:
            logger.warning(f"Blob already missing: {filename}")
            return False
        except (StorageError, ValidationError) as e:
            logger.warning(f"Could not discard blob {filename}: {e}")
            return False
        return True
