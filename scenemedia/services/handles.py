"""Transient, caller-owned references over asset bytes.

A handle is the in-process counterpart of a browser object URL: it pins a
copy of an asset payload under an opaque ``blob:`` URL until the owner
releases it. Every ``create`` must be matched by exactly one ``release``.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass

from scenemedia.core.metrics import set_outstanding_handles


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaHandle:
    url: str
    asset_type: str
    asset_id: int
    mime_type: str | None
    size_bytes: int


class HandleRegistry:
    def __init__(self, url_prefix: str = "blob:scenemedia"):
        self.url_prefix = url_prefix.rstrip("/")
        self._payloads: dict[str, tuple[MediaHandle, bytes]] = {}
        self._lock = threading.Lock()

    def create(self, asset_type: str, asset_id: int, data: bytes, mime_type: str | None = None) -> MediaHandle:
        handle = MediaHandle(
            url=f"{self.url_prefix}/{uuid.uuid4()}",
            asset_type=asset_type,
            asset_id=asset_id,
            mime_type=mime_type,
            size_bytes=len(data),
        )
        with self._lock:
            self._payloads[handle.url] = (handle, bytes(data))
            set_outstanding_handles(len(self._payloads))
        return handle

    def release(self, handle: MediaHandle | str | None) -> bool:
        """Drop a handle. Releasing an unknown or already released handle is a no-op."""
        if handle is None:
            return False
        url = handle if isinstance(handle, str) else handle.url
        with self._lock:
            removed = self._payloads.pop(url, None) is not None
            set_outstanding_handles(len(self._payloads))
        return removed

    def open(self, handle: MediaHandle | str) -> bytes | None:
        url = handle if isinstance(handle, str) else handle.url
        with self._lock:
            entry = self._payloads.get(url)
        return entry[1] if entry else None

    def lookup(self, url: str) -> MediaHandle | None:
        with self._lock:
            entry = self._payloads.get(url)
        return entry[0] if entry else None

    def release_all(self) -> int:
        with self._lock:
            count = len(self._payloads)
            self._payloads.clear()
            set_outstanding_handles(0)
        if count:
            logger.info("handles_released", extra={"count": count})
        return count

    @property
    def outstanding(self) -> int:
        with self._lock:
            return len(self._payloads)
