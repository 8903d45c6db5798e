import pytest
from botocore.exceptions import ClientError

from localbiz.core.config import settings
from localbiz.core.errors import StoreError, ValidationError
from localbiz.services.storage import (
    ImageStorage,
    LocalImageStorage,
    S3ImageStorage,
    StoredImage,
    is_durable_reference,
    resolve_image_url,
)
from tests.conftest import user_headers


@pytest.mark.parametrize(
    "ref, durable",
    [
        ("https://cdn.example.com/a.jpg", True),
        ("http://cdn.example.com/a.jpg", True),
        ("user-1/20240101-abc.jpg", True),
        ("blob:http://localhost:3000/5f1c", False),
        ("data:image/png;base64,AAAA", False),
        ("file:///tmp/a.jpg", False),
        ("/placeholder.svg", False),
        ("", False),
        (None, False),
    ],
)
def test_durable_references(ref, durable):
    assert is_durable_reference(ref) is durable


def test_local_storage_roundtrip(tmp_path):
    storage = LocalImageStorage(str(tmp_path), base_url="https://dir.example.com/", url_prefix="media")

    stored = storage.upload("u1/pic.jpg", b"img")
    assert stored.url == "https://dir.example.com/media/u1/pic.jpg"
    assert (tmp_path / "u1" / "pic.jpg").read_bytes() == b"img"
    assert storage.path_from_url(stored.url) == "u1/pic.jpg"
    assert storage.path_from_url("https://elsewhere.example.com/u1/pic.jpg") is None

    with pytest.raises(StoreError):
        storage.upload("u1/pic.jpg", b"again")

    storage.delete("u1/pic.jpg")
    assert not (tmp_path / "u1" / "pic.jpg").exists()


def test_local_storage_rejects_path_escape(tmp_path):
    storage = LocalImageStorage(str(tmp_path), base_url="http://x")
    with pytest.raises(ValidationError):
        storage.upload("../outside.jpg", b"x")


def test_resolve_image_url_falls_back_to_placeholder(tmp_path):
    storage = LocalImageStorage(str(tmp_path), base_url="http://x")
    assert resolve_image_url(storage, "https://cdn/a.jpg", placeholder="/p.svg") == "https://cdn/a.jpg"
    assert resolve_image_url(storage, "u1/a.jpg", placeholder="/p.svg") == "http://x/media/u1/a.jpg"
    assert resolve_image_url(storage, "", placeholder="/p.svg") == "/p.svg"
    assert resolve_image_url(storage, "../etc/passwd", placeholder="/p.svg") == "/p.svg"


class FakeS3Client:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.objects: dict[str, bytes] = {}

    def _maybe_fail(self, op: str) -> None:
        if self.fail:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, op)

    def put_object(self, *, Bucket, Key, Body, ContentType, CacheControl):
        self._maybe_fail("PutObject")
        self.objects[Key] = Body

    def delete_object(self, *, Bucket, Key):
        self._maybe_fail("DeleteObject")
        self.objects.pop(Key, None)


def test_s3_storage_urls_and_errors():
    client = FakeS3Client()
    storage = S3ImageStorage("business-images", region="eu-west-1", client=client)

    stored = storage.upload("u1/a.png", b"png")
    assert stored.url == "https://business-images.s3.eu-west-1.amazonaws.com/u1/a.png"
    assert client.objects == {"u1/a.png": b"png"}
    assert storage.path_from_url(stored.url) == "u1/a.png"

    assert storage.delete_many([stored.url, "https://other.example.com/x.png"]) == 1
    assert client.objects == {}

    failing = S3ImageStorage("b", region="r", endpoint_url="http://minio:9000", client=FakeS3Client(fail=True))
    assert failing.public_url("k.png") == "http://minio:9000/b/k.png"
    with pytest.raises(StoreError):
        failing.upload("k.png", b"x")
    assert failing.delete_many(["k.png"]) == 0


def test_upload_endpoint_validates_images(client, db):
    headers = user_headers(db, "uploader@example.com")

    r = client.post("/uploads/images", files={"file": ("notes.txt", b"hello", "text/plain")}, headers=headers)
    assert r.status_code == 422

    r = client.post("/uploads/images", files={"file": ("pic.png", b"\x89PNG", "image/png")}, headers=headers)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["url"].startswith("http://testserver/media/")
    assert body["path"].endswith(".png")

    assert client.post("/uploads/images", files={"file": ("pic.png", b"x", "image/png")}).status_code == 401


def test_upload_size_limit(client, db, monkeypatch):
    monkeypatch.setattr(settings, "image_max_bytes", 10)
    headers = user_headers(db, "big@example.com")
    r = client.post("/uploads/images", files={"file": ("big.png", b"x" * 11, "image/png")}, headers=headers)
    assert r.status_code == 422


def test_users_can_only_delete_their_own_uploads(client, db):
    alice = user_headers(db, "alice@example.com")
    bob = user_headers(db, "bob@example.com")
    uploaded = client.post(
        "/uploads/images", files={"file": ("pic.png", b"\x89PNG", "image/png")}, headers=alice
    ).json()

    assert client.delete("/uploads/images", params={"path": uploaded["path"]}, headers=bob).status_code == 403
    assert client.delete("/uploads/images", params={"url": uploaded["url"]}, headers=alice).status_code == 204


def test_delete_many_respects_prefix():
    client = FakeS3Client()
    storage = S3ImageStorage("business-images", region="eu-west-1", client=client)
    storage.upload("u1/a.png", b"a")
    storage.upload("u2/b.png", b"b")

    assert storage.delete_many(["u1/a.png", "u2/b.png"], prefix="u1/") == 1
    assert client.objects == {"u2/b.png": b"b"}


def test_incomplete_backend_cannot_be_instantiated():
    class UploadOnly(ImageStorage):
        def upload(self, name, data, *, content_type=None):
            return StoredImage(url=name, path=name)

    with pytest.raises(TypeError):
        UploadOnly()
