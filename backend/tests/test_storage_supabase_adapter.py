"""
Supabase storage adapter: bucket-relative keys, public URL shapes and error
mapping, using a duck-typed fake client.
"""
from __future__ import annotations

import pytest

from backend.teaching.storage import course_file_key, storage_key_from_public_url
from backend.teaching.storage_supabase import SupabaseStorageAdapter


class _FakeBucket:
    def __init__(self, public_url_result=None, fail_upload: bool = False):
        self.uploads: list = []
        self.removed: list = []
        self._public = public_url_result
        self._fail = fail_upload

    def upload(self, path, body, options):
        if self._fail:
            raise ConnectionError("storage down")
        self.uploads.append((path, body, options))

    def get_public_url(self, path):
        return self._public if self._public is not None else f"https://sb.test/storage/v1/object/public/course-files/{path}?"

    def remove(self, paths):
        self.removed.extend(paths)


class _FakeStorage:
    def __init__(self, bucket: _FakeBucket):
        self._bucket = bucket
        self.requested: list = []

    def from_(self, name):
        self.requested.append(name)
        return self._bucket


class _FakeClient:
    def __init__(self, bucket: _FakeBucket):
        self.storage = _FakeStorage(bucket)


def test_upload_strips_bucket_prefix_and_sets_content_type():
    bucket = _FakeBucket()
    adapter = SupabaseStorageAdapter(_FakeClient(bucket))
    adapter.upload(bucket="course-files", key="/course-files/courses/c1/ab.pdf", body=b"x", content_type="application/pdf")
    path, body, options = bucket.uploads[0]
    assert path == "courses/c1/ab.pdf"
    assert options["content-type"] == "application/pdf"


def test_upload_errors_become_runtime_errors():
    adapter = SupabaseStorageAdapter(_FakeClient(_FakeBucket(fail_upload=True)))
    with pytest.raises(RuntimeError, match="upload_failed"):
        adapter.upload(bucket="course-files", key="k", body=b"x", content_type="text/plain")


@pytest.mark.parametrize(
    "result",
    [
        {"publicUrl": "https://sb.test/p/courses/c1/a.pdf"},
        {"data": {"publicURL": "https://sb.test/p/courses/c1/a.pdf"}},
        "https://sb.test/p/courses/c1/a.pdf?",
    ],
)
def test_public_url_shapes(result):
    adapter = SupabaseStorageAdapter(_FakeClient(_FakeBucket(public_url_result=result)))
    assert adapter.public_url(bucket="course-files", key="courses/c1/a.pdf") == "https://sb.test/p/courses/c1/a.pdf"


def test_public_url_missing_raises():
    adapter = SupabaseStorageAdapter(_FakeClient(_FakeBucket(public_url_result={})))
    with pytest.raises(RuntimeError):
        adapter.public_url(bucket="course-files", key="k")


def test_delete_and_key_helpers():
    bucket = _FakeBucket()
    adapter = SupabaseStorageAdapter(_FakeClient(bucket))
    key = course_file_key("c1", "abc123", "Lecture Notes.PDF")
    assert key == "courses/c1/abc123.pdf"
    url = adapter.public_url(bucket="course-files", key=key)
    assert storage_key_from_public_url(url, "c1") == key
    adapter.delete_object(bucket="course-files", key=key)
    assert bucket.removed == [key]
    assert course_file_key("c1", "abc123", "README") == "courses/c1/abc123"
