import io
import os
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from volaticus.core.exceptions import InvalidInput, NotFound, StorageError
from volaticus.storage import create_storage
from volaticus.storage.base import CACHE_CONTROL
from volaticus.storage.local import LocalStorage
from volaticus.storage.mime import OCTET_STREAM, TEXT_PLAIN, sniff_mime
from volaticus.storage.object import ObjectStorage

PNG_HEADER = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR" + b"\x00" * 32


class FailingStream(io.BytesIO):
    def read(self, size=-1):
        if self.tell() > 0:
            raise OSError("connection reset")
        return super().read(4)


def client_error(code, operation="HeadObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# mime sniffing

def test_sniff_text():
    assert sniff_mime(b"Hello world") == TEXT_PLAIN


def test_sniff_empty_is_text():
    assert sniff_mime(b"") == TEXT_PLAIN


def test_sniff_png():
    assert sniff_mime(PNG_HEADER) == "image/png"


def test_sniff_binary():
    assert sniff_mime(b"\x00\x01\x02\x03garbage") == OCTET_STREAM


def test_sniff_html():
    assert sniff_mime(b"<!DOCTYPE html><html></html>").startswith("text/html")


def test_sniff_utf8_cut_at_window():
    head = ("a" * 511 + "é").encode("utf-8")[:512]
    assert sniff_mime(head) == TEXT_PLAIN


# local storage

def test_local_write_and_stream(storage):
    written = storage.write("abcd-1.txt", io.BytesIO(b"Hello world"))

    assert written == 11
    assert storage.exists("abcd-1.txt")
    blob = storage.stream("abcd-1.txt")
    assert blob.content_type.startswith("text/plain")
    assert blob.size == 11
    assert blob.cache_control == CACHE_CONTROL
    assert b"".join(blob.chunks) == b"Hello world"


def test_local_creates_base_dir(tmp_path):
    base = tmp_path / "nested" / "uploads"
    LocalStorage(str(base))
    assert base.is_dir()


def test_local_failed_write_leaves_nothing(storage):
    with pytest.raises(StorageError):
        storage.write("broken.bin", FailingStream(b"x" * 100))

    assert not storage.exists("broken.bin")
    assert os.listdir(storage.base_dir) == []


def test_local_stream_missing(storage):
    with pytest.raises(NotFound):
        storage.stream("nope")


def test_local_delete_is_idempotent(storage):
    storage.write("k1", io.BytesIO(b"data"))
    storage.delete("k1")
    storage.delete("k1")
    assert not storage.exists("k1")


@pytest.mark.parametrize("key", ["", "../escape", "a/b", ".hidden", "a\\b"])
def test_local_rejects_unsafe_keys(storage, key):
    with pytest.raises(InvalidInput):
        storage.write(key, io.BytesIO(b"data"))


def test_local_enumerate(storage):
    storage.write("aa-1.txt", io.BytesIO(b"one"))
    storage.write("bb-2.png", io.BytesIO(PNG_HEADER))

    blobs = {blob.name: blob for blob in storage.enumerate()}

    assert set(blobs) == {"aa-1.txt", "bb-2.png"}
    assert blobs["aa-1.txt"].size == 3
    assert blobs["bb-2.png"].content_type == "image/png"
    assert isinstance(blobs["aa-1.txt"].modified_at, datetime)
    assert [blob.name for blob in storage.enumerate("bb")] == ["bb-2.png"]


def test_local_enumerate_skips_dotfiles(storage):
    storage.write("aa-1.txt", io.BytesIO(b"one"))
    for name in (".gitkeep", ".DS_Store", ".tmp-partial"):
        with open(os.path.join(storage.base_dir, name), "wb") as handle:
            handle.write(b"x")

    assert [blob.name for blob in storage.enumerate()] == ["aa-1.txt"]


def test_create_storage_local(tmp_path):
    settings = MagicMock(STORAGE_PROVIDER="local", LOCAL_PATH=str(tmp_path / "blobs"))
    assert isinstance(create_storage(settings), LocalStorage)


# object storage

@pytest.fixture
def s3_client():
    client = MagicMock()
    client.head_bucket.return_value = {}
    return client


def test_object_creates_missing_bucket(s3_client):
    s3_client.head_bucket.side_effect = client_error("404", "HeadBucket")

    ObjectStorage("uploads", client=s3_client)

    s3_client.create_bucket.assert_called_once_with(Bucket="uploads")


def test_object_bucket_creation_failure_is_not_fatal(s3_client):
    s3_client.head_bucket.side_effect = client_error("404", "HeadBucket")
    s3_client.create_bucket.side_effect = client_error("AccessDenied", "CreateBucket")

    ObjectStorage("uploads", client=s3_client)


def test_object_registers_project_header(s3_client):
    storage = ObjectStorage("uploads", project_id="my-project", client=s3_client)

    s3_client.meta.events.register.assert_called_once()
    request = MagicMock(headers={})
    storage._add_project_header(request)
    assert request.headers["x-goog-project-id"] == "my-project"


def test_object_write_counts_bytes(s3_client):
    s3_client.upload_fileobj.side_effect = lambda fileobj, bucket, key, ExtraArgs: fileobj.read()
    storage = ObjectStorage("uploads", client=s3_client)

    written = storage.write("k1.txt", io.BytesIO(b"Hello world"), "text/plain; charset=utf-8")

    assert written == 11
    _, bucket, key = s3_client.upload_fileobj.call_args.args
    assert (bucket, key) == ("uploads", "k1.txt")
    extra = s3_client.upload_fileobj.call_args.kwargs["ExtraArgs"]
    assert extra == {"CacheControl": CACHE_CONTROL, "ContentType": "text/plain; charset=utf-8"}


def test_object_failed_write_deletes_object(s3_client):
    s3_client.upload_fileobj.side_effect = client_error("InternalError", "PutObject")
    storage = ObjectStorage("uploads", client=s3_client)

    with pytest.raises(StorageError):
        storage.write("k1", io.BytesIO(b"data"))

    s3_client.delete_object.assert_called_once_with(Bucket="uploads", Key="k1")


def test_object_exists(s3_client):
    storage = ObjectStorage("uploads", client=s3_client)
    assert storage.exists("k1")

    s3_client.head_object.side_effect = client_error("404")
    assert not storage.exists("k1")

    s3_client.head_object.side_effect = client_error("403")
    with pytest.raises(StorageError):
        storage.exists("k1")


def test_object_stream(s3_client):
    body = MagicMock()
    body.iter_chunks.return_value = iter([b"Hello ", b"world"])
    s3_client.get_object.return_value = {
        "Body": body,
        "ContentType": "text/plain",
        "ContentLength": 11,
        "CacheControl": CACHE_CONTROL,
    }
    storage = ObjectStorage("uploads", client=s3_client)

    blob = storage.stream("k1")

    assert blob.content_type == "text/plain"
    assert blob.size == 11
    assert b"".join(blob.chunks) == b"Hello world"
    body.close.assert_called_once()


def test_object_stream_missing(s3_client):
    s3_client.get_object.side_effect = client_error("NoSuchKey", "GetObject")
    storage = ObjectStorage("uploads", client=s3_client)

    with pytest.raises(NotFound):
        storage.stream("k1")


def test_object_enumerate(s3_client):
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"Contents": [{"Key": "a-1.txt", "Size": 3, "LastModified": datetime(2024, 1, 1, tzinfo=timezone.utc)}]},
        {},
    ]
    s3_client.get_paginator.return_value = paginator
    storage = ObjectStorage("uploads", client=s3_client)

    blobs = storage.enumerate()

    assert len(blobs) == 1
    assert blobs[0].name == "a-1.txt"
    assert blobs[0].size == 3
    assert blobs[0].content_type == "text/plain"
    assert blobs[0].modified_at == datetime(2024, 1, 1)
