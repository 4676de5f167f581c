"""Cover image storage.

Images picked in the wizard start life as ``blob:`` handles held in a
:class:`BlobRegistry`. They only become durable once the draft merges the
cover section, which uploads the bytes to the :class:`AssetStore` and keeps
the returned key.
"""

from __future__ import annotations

import logging
import re
import secrets
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from .errors import AssetUploadFailure, NotFound

logger = logging.getLogger("uvicorn.error")

BLOB_PREFIX = "blob:"
_ext_invalid = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class Blob:
    data: bytes
    content_type: str


def is_blob_ref(value: str | None) -> bool:
    return bool(value) and value.startswith(BLOB_PREFIX)


class BlobRegistry:
    """Locally scoped binary handles, valid until uploaded or revoked."""

    def __init__(self) -> None:
        self._blobs: dict[str, Blob] = {}
        self._lock = threading.Lock()

    def register(self, data: bytes, content_type: str = "image/jpeg") -> str:
        ref = f"{BLOB_PREFIX}{uuid.uuid4()}"
        with self._lock:
            self._blobs[ref] = Blob(data=data, content_type=content_type or "image/jpeg")
        return ref

    def read(self, ref: str) -> Blob:
        with self._lock:
            blob = self._blobs.get(ref)
        if blob is None:
            raise NotFound(f"Unknown local image {ref}")
        return blob

    def revoke(self, ref: str) -> None:
        with self._lock:
            self._blobs.pop(ref, None)

    def __contains__(self, ref: object) -> bool:
        with self._lock:
            return ref in self._blobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


def generate_asset_key(content_type: str | None) -> str:
    """Return ``<millis>-<random>.<ext>`` using the subtype of ``content_type``."""
    subtype = (content_type or "").partition("/")[2].split(";")[0].split("+")[0]
    ext = _ext_invalid.sub("", subtype.lower()) or "jpg"
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"


class AssetStore:
    """Bucketed file storage rooted at a local directory."""

    def __init__(self, root: Path, public_base_url: str) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, bucket: str, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise AssetUploadFailure(f"Invalid asset key: {key!r}")
        return self.root / bucket / key

    def upload_asset(self, bucket: str, key: str, data: bytes) -> str:
        path = self._path_for(bucket, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("xb") as handle:
                handle.write(data)
        except OSError as exc:
            logger.error("Asset upload to %s/%s failed: %s", bucket, key, exc)
            raise AssetUploadFailure(f"Could not store image {key}") from exc
        logger.info("Stored asset %s/%s (%d bytes)", bucket, key, len(data))
        return key

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.public_base_url}/{bucket}/{key}"

    def exists(self, bucket: str, key: str) -> bool:
        return (self.root / bucket / key).is_file()


def cover_image_url(store: AssetStore, bucket: str, ref: str | None) -> str:
    """Resolve a cover reference to something a browser can load."""
    if not ref:
        return ""
    if ref.startswith(("http://", "https://")) or is_blob_ref(ref):
        return ref
    return store.public_url(bucket, ref)
