from __future__ import annotations

import asyncio
import os
import re
import tempfile
from pathlib import Path, PurePosixPath

from signdesk.core.errors import Forbidden, NotFound, StorageFailure, ValidationFailed
from signdesk.core.logging import get_logger

logger = get_logger(__name__)

PDF_MAGIC = b"%PDF-"
NAMESPACE = "contracts"
_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def _slugify(title: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "-", title).strip("-").lower()
    return slug[:60] or "contract"


class ArtifactStore:
    """
    Filesystem store for signed artifacts.

    Files live under ``<root>/contracts/<contract_id>/``; locations handed out
    are root-relative POSIX paths and every read is checked to stay inside the
    root.
    """

    def __init__(self, root: str | Path, *, max_bytes: int):
        self.root = Path(root)
        self.max_bytes = max_bytes

    def validate(self, content: bytes) -> None:
        if not content:
            raise ValidationFailed("Signed artifact is empty", field="content")
        if len(content) > self.max_bytes:
            raise ValidationFailed(
                f"Signed artifact exceeds {self.max_bytes} bytes",
                field="content",
                details={"size": len(content), "max_bytes": self.max_bytes},
            )
        if not content.startswith(PDF_MAGIC):
            raise ValidationFailed("Signed artifact is not a PDF document", field="content")

    async def store(self, content: bytes, contract_id: str, title: str, *, request_id: str | None = None) -> str:
        self.validate(content)
        if not _SAFE_SEGMENT.match(contract_id):
            raise ValidationFailed("Contract id is not a valid storage namespace", field="contract_id")
        suffix = f"-{request_id}" if request_id and _SAFE_SEGMENT.match(request_id) else ""
        location = str(PurePosixPath(NAMESPACE, contract_id, f"{_slugify(title)}{suffix}.pdf"))
        target = self._resolve(location)
        try:
            await asyncio.to_thread(self._write_atomic, target, content)
        except OSError as exc:
            logger.error("artifact.store.failed", contract_id=contract_id, location=location, error=str(exc))
            raise StorageFailure("Could not persist signed artifact", details={"location": location}) from exc
        logger.info("artifact.stored", contract_id=contract_id, location=location, size=len(content))
        return location

    async def read(self, location: str) -> bytes:
        path = self._resolve(location)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFound("Signed artifact not found", details={"location": location}) from exc
        except OSError as exc:
            logger.error("artifact.read.failed", location=location, error=str(exc))
            raise StorageFailure("Could not read signed artifact", details={"location": location}) from exc

    async def delete(self, location: str) -> bool:
        """Remove a stored artifact; returns False when it was already gone."""
        path = self._resolve(location)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("artifact.delete.failed", location=location, error=str(exc))
            raise StorageFailure("Could not remove signed artifact", details={"location": location}) from exc
        logger.info("artifact.deleted", location=location)
        return True

    def _resolve(self, location: str) -> Path:
        root = self.root.resolve()
        candidate = (root / location).resolve()
        if candidate == root or root not in candidate.parents:
            logger.warning("artifact.path.rejected", location=location)
            raise Forbidden("Artifact location is outside managed storage", details={"location": location})
        return candidate

    @staticmethod
    def _write_atomic(target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
