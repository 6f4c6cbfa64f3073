"""
Physical backings for the tenant store.

A backend only knows how to load and save the full list of tenant records
(plain dicts in their persisted camelCase form). Locking, merging and
validation live in TenantStore, so a backend can be swapped without
touching the resolver or the coordinator.
"""

import json
import logging
import os
import tempfile
import zlib
from pathlib import Path
from typing import Any, Optional, Protocol, Union

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class TenantBackend(Protocol):
    """Load-at-startup / persist-on-write contract."""

    def load(self) -> list[Record]:
        ...

    def save(self, records: list[Record]) -> None:
        ...


class InMemoryBackend:
    """Keeps a serialized copy in memory. Used by tests and the ``memory`` setting."""

    def __init__(self, records: Optional[list[Record]] = None) -> None:
        self._blob = json.dumps(records or [])

    def load(self) -> list[Record]:
        return json.loads(self._blob)

    def save(self, records: list[Record]) -> None:
        self._blob = json.dumps(records)


class CompressedFileBackend:
    """All tenants as one zlib-compressed JSON document on disk.

    Writes go to a temp file in the same directory and are moved into
    place with ``os.replace`` so a crash never leaves a torn file.
    """

    def __init__(self, path: Union[str, Path], level: int = 6) -> None:
        self.path = Path(path)
        self.level = level

    def load(self) -> list[Record]:
        if not self.path.exists():
            logger.info("No tenant store at %s, starting empty", self.path)
            return []
        raw = self.path.read_bytes()
        if not raw:
            return []
        records = json.loads(zlib.decompress(raw).decode("utf-8"))
        if not isinstance(records, list):
            raise ValueError(f"Tenant store {self.path} does not hold a list of records")
        logger.info("Loaded %d tenant(s) from %s", len(records), self.path)
        return records

    def save(self, records: list[Record]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = zlib.compress(
            json.dumps(records, ensure_ascii=False, separators=(",", ":")).encode("utf-8"),
            self.level,
        )
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".tenants-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Persisted %d tenant(s) to %s (%d bytes)", len(records), self.path, len(payload))


def create_backend(kind: str, path: str) -> TenantBackend:
    """Build the backend named by ``StoreConfig.backend``."""
    if kind == "memory":
        return InMemoryBackend()
    if kind == "file":
        return CompressedFileBackend(path)
    raise ValueError(f"Unknown store backend: {kind!r}")
