"""Read access to care-log photos for multimodal analysis."""

from __future__ import annotations

import base64
from typing import Protocol
from urllib import error, parse, request

DEFAULT_MEDIA_TYPE = "image/jpeg"


class PhotoGatherFailed(RuntimeError):
    """Photo selection for a zone could not be completed."""


class PhotoFetchFailed(RuntimeError):
    """A single photo could not be turned into a data URL."""


class PhotoStore(Protocol):
    def get_read_url(self, key: str) -> str: ...


class PublicBucketPhotoStore:
    """Resolves storage keys against a bucket that is already readable over HTTP."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def get_read_url(self, key: str) -> str:
        return f"{self.base_url}/{parse.quote(key.lstrip('/'))}"


class PhotoLoader:
    def __init__(self, store: PhotoStore | None = None, *, timeout_s: float = 10.0) -> None:
        self.store = store
        self.timeout_s = timeout_s

    def load(self, photo_url: str) -> str:
        """Return ``photo_url`` as a ``data:`` URL, downloading it when needed."""
        if photo_url.startswith("data:"):
            return photo_url
        if self.store is None:
            raise PhotoFetchFailed(f"no photo store configured for key {photo_url!r}")
        read_url = self.store.get_read_url(photo_url)
        try:
            with request.urlopen(read_url, timeout=self.timeout_s) as response:
                content = response.read()
                media_type = response.headers.get_content_type() or DEFAULT_MEDIA_TYPE
        except (TimeoutError, error.URLError) as exc:
            raise PhotoFetchFailed(f"photo download failed: {exc}") from exc
        if not media_type.startswith("image/"):
            media_type = DEFAULT_MEDIA_TYPE
        encoded = base64.b64encode(content).decode("ascii")
        return f"data:{media_type};base64,{encoded}"
