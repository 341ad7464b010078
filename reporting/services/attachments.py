from __future__ import annotations

import logging
import os
import uuid
from typing import BinaryIO

from reporting.core.errors import NotFoundError, ValidationError

logger = logging.getLogger("reporting.attachments")

CHUNK_SIZE = 1024 * 1024


class AttachmentStore:
    """Binary file storage on the local filesystem, laid out as <root>/reports/<report_id>/<stored_name>."""

    def __init__(self, root: str, max_bytes: int):
        self.root = root
        self.max_bytes = max_bytes

    def _dir(self, report_id: str) -> str:
        return os.path.join(self.root, "reports", report_id)

    def path_for(self, report_id: str, stored_name: str) -> str:
        # stored names are generated here; basename() guards against tampered rows
        return os.path.join(self._dir(report_id), os.path.basename(stored_name))

    def save(self, report_id: str, file_name: str, data: bytes | BinaryIO) -> tuple[str, int]:
        """Write ``data`` under a fresh unique name. Returns (stored_name, size)."""
        os.makedirs(self._dir(report_id), exist_ok=True)
        ext = os.path.splitext(file_name)[1]
        stored_name = f"{uuid.uuid4().hex}{ext}"
        dest = self.path_for(report_id, stored_name)

        size = 0
        with open(dest, "wb") as out:
            if isinstance(data, (bytes, bytearray)):
                size = len(data)
                if size <= self.max_bytes:
                    out.write(data)
            else:
                while True:
                    chunk = data.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_bytes:
                        break
                    out.write(chunk)

        if size > self.max_bytes:
            self.delete(report_id, stored_name)
            raise ValidationError(
                f"file is too large (max {self.max_bytes // (1024 * 1024)}MB)", file_name=file_name
            )
        if size == 0:
            self.delete(report_id, stored_name)
            raise ValidationError("file is empty", file_name=file_name)
        return stored_name, size

    def read(self, report_id: str, stored_name: str) -> bytes:
        path = self.path_for(report_id, stored_name)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError as exc:
            raise NotFoundError("attachment file is missing", report_id=report_id) from exc

    def delete(self, report_id: str, stored_name: str) -> None:
        """Remove a stored file. Only used to clean up after a write that did not commit."""
        path = self.path_for(report_id, stored_name)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)
