"""
Supabase-backed storage adapter for course files.

Wraps whatever client the wiring hands in, so tests can pass a fake. The
client exposes `.storage.from_(bucket)` (supabase client) or `.from_(bucket)`
(storage3 client) returning a bucket handle with `upload`, `get_public_url`
(string or dict with `publicUrl` / `public_url` / `publicURL`) and `remove`.

Access:
- The caller must initialise the client with the Service Role key.
- The course-files bucket is public-read; only server code writes to it.
"""
from __future__ import annotations

from typing import Any, Dict

from .storage import StorageAdapterProtocol


class SupabaseStorageAdapter(StorageAdapterProtocol):
    """Course-file uploads, public URLs and deletes through supabase-py."""

    def __init__(self, client: Any):
        self._client = client

    def _bucket(self, bucket: str) -> Any:
        c = self._client
        storage = getattr(c, "storage", None)
        if storage is not None and hasattr(storage, "from_"):
            return storage.from_(bucket)
        if hasattr(c, "from_"):
            return c.from_(bucket)  # type: ignore[attr-defined]
        raise RuntimeError("invalid_supabase_client")

    @staticmethod
    def _relative(bucket: str, key: str) -> str:
        # storage3 prepends the bucket id itself
        norm_key = key.lstrip("/")
        prefix = f"{bucket}/"
        if norm_key.startswith(prefix):
            norm_key = norm_key[len(prefix):]
        return norm_key

    @staticmethod
    def _first_key(d: Dict[str, Any], *keys: str) -> Any:
        for k in keys:
            if k in d and d[k] is not None:
                return d[k]
        return None

    def upload(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None:
        b = self._bucket(bucket)
        # Some client versions expect file options with either kebab or camel case.
        opts = {"content-type": content_type, "contentType": content_type}
        try:
            b.upload(self._relative(bucket, key), body, opts)
        except Exception as exc:
            raise RuntimeError("upload_failed") from exc

    def public_url(self, *, bucket: str, key: str) -> str:
        res = self._bucket(bucket).get_public_url(self._relative(bucket, key))
        url = None
        if isinstance(res, str):
            url = res
        elif isinstance(res, dict):
            url = self._first_key(res, "publicUrl", "public_url", "publicURL")
            data = res.get("data")
            if url is None and isinstance(data, dict):
                url = self._first_key(data, "publicUrl", "public_url", "publicURL")
        if not url:
            raise RuntimeError("failed_to_resolve_public_url")
        # supabase-py appends a bare "?" on some versions
        return str(url).rstrip("?")

    def delete_object(self, *, bucket: str, key: str) -> None:
        self._bucket(bucket).remove([self._relative(bucket, key)])


__all__ = ["SupabaseStorageAdapter"]
