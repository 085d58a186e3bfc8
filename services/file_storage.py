"""
File Storage Service

Stores uploaded images under a root directory with one subtree per
namespace:

    <root>/faces/       registered face images
    <root>/attendance/  capture evidence

Paths handed back to callers are relative to the root and always use
forward slashes, so they stay valid when the root moves.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Optional

import config
from services.exceptions import NotFoundError, StorageIOError, ValidationError

logger = logging.getLogger(__name__)

FACES = "faces"
EVIDENCE = "evidence"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_EXTENSION = re.compile(r"^[a-z0-9]+$")


def file_extension(original_filename: Optional[str]) -> str:
    """
    Extension (with leading dot, lower-cased) of an uploaded file name.

    Falls back to the default extension when the name has no usable suffix.
    """
    if not original_filename:
        return config.DEFAULT_IMAGE_EXTENSION

    last_dot = original_filename.rfind(".")
    if last_dot <= 0:
        return config.DEFAULT_IMAGE_EXTENSION

    extension = original_filename[last_dot + 1:].lower()
    if not _EXTENSION.match(extension):
        return config.DEFAULT_IMAGE_EXTENSION
    return "." + extension


class FileStore:
    """
    Collision-safe file store.

    Features:
    - Namespaced directory layout (faces / evidence)
    - prefix.ext, prefix_1.ext, prefix_2.ext ... naming on collision
    - Exclusive-create writes, so two writers never share a file
    - Partial files removed when a write fails
    """

    def __init__(self, root: str = None, namespaces: Dict[str, str] = None):
        """
        Initialize the store and create its directories.

        Args:
            root: Root directory (defaults to UPLOAD_DIR)
            namespaces: Mapping of namespace name to subdirectory
        """
        self.root = Path(root) if root else Path(config.UPLOAD_DIR)
        self.namespaces = namespaces or {
            FACES: config.FACES_SUBDIR,
            EVIDENCE: config.EVIDENCE_SUBDIR,
        }

        try:
            for subdir in self.namespaces.values():
                (self.root / subdir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(
                f"Cannot create upload directories under {self.root}",
                {"root": str(self.root), "error": str(e)},
            ) from e

        logger.info("Upload directories initialized: %s", self.root)

    def save(
        self,
        blob: bytes,
        namespace: str,
        prefix: str,
        original_filename: Optional[str] = None,
    ) -> str:
        """
        Write a blob under a free name and return its relative path.

        Args:
            blob: File content
            namespace: FACES or EVIDENCE
            prefix: Desired file name without extension
            original_filename: Uploaded file name, used for the extension

        Returns:
            Relative path such as "attendance/attendance_23CS041_20251013075537.jpg"
        """
        if namespace not in self.namespaces:
            raise ValidationError(f"Unknown storage namespace: {namespace}", {"namespace": namespace})

        safe_prefix = _UNSAFE_CHARS.sub("_", prefix or "").strip(".")
        if not safe_prefix:
            raise ValidationError("File name prefix cannot be empty", {"prefix": prefix})

        extension = file_extension(original_filename)
        subdir = self.namespaces[namespace]
        directory = self.root / subdir

        counter = 0
        while True:
            filename = safe_prefix + extension if counter == 0 else f"{safe_prefix}_{counter}{extension}"
            file_path = directory / filename
            try:
                handle = open(file_path, "xb")
            except FileExistsError:
                counter += 1
                continue
            except OSError as e:
                raise StorageIOError(
                    f"Cannot create file {filename}",
                    {"path": f"{subdir}/{filename}", "error": str(e)},
                ) from e
            break

        try:
            with handle:
                handle.write(blob)
        except OSError as e:
            logger.error("Error saving file %s: %s", file_path, e)
            file_path.unlink(missing_ok=True)
            raise StorageIOError(
                f"Cannot write file {filename}",
                {"path": f"{subdir}/{filename}", "error": str(e)},
            ) from e

        relative_path = f"{subdir}/{filename}"
        logger.debug("Saved %d bytes to %s", len(blob), relative_path)
        return relative_path

    def resolve(self, path: str) -> Path:
        """Absolute location of a stored relative path, confined to the root."""
        if not path:
            raise ValidationError("File path cannot be empty")

        root = self.root.resolve()
        candidate = (root / path.replace("\\", "/")).resolve()
        if candidate != root and root not in candidate.parents:
            raise ValidationError("File path escapes the upload directory", {"path": path})
        return candidate

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def read(self, path: str) -> bytes:
        """Return the stored bytes, or raise NotFoundError."""
        file_path = self.resolve(path)
        try:
            return file_path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {path}", {"path": path}) from e
        except IsADirectoryError as e:
            raise NotFoundError(f"File not found: {path}", {"path": path}) from e
        except OSError as e:
            raise StorageIOError(f"Cannot read file {path}", {"path": path, "error": str(e)}) from e

    def delete(self, path: str) -> bool:
        """
        Remove a stored file.

        Returns:
            True if a file was removed, False if it was already absent
        """
        file_path = self.resolve(path)
        try:
            file_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageIOError(f"Cannot delete file {path}", {"path": path, "error": str(e)}) from e

        logger.info("File deleted: %s", path)
        return True


# Singleton instance
_file_store_instance: Optional[FileStore] = None


def get_file_store() -> FileStore:
    """Get or create FileStore singleton"""
    global _file_store_instance
    if _file_store_instance is None:
        _file_store_instance = FileStore()
    return _file_store_instance
