"""Tests for image intake and the Cloudinary client."""
import base64
import hashlib
from datetime import datetime, timezone

import pytest
import requests

import media
from auth import SessionUser
from conftest import FakeUploader
from errors import InvalidType, TooLarge, UpstreamFailure, ValidationError
from main import upload_images
from media import CloudinaryUploader, IncomingFile, MediaIntake

MB = 1024 * 1024
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def jpeg(name, size=1024):
    return IncomingFile(data=b"\xff" * size, content_type="image/jpeg", size=size, filename=name)


def data_url(mime="image/png", payload=PNG_BYTES):
    return f"data:{mime};base64,{base64.b64encode(payload).decode()}"


@pytest.mark.parametrize("bad_index", [0, 1, 2])
def test_oversized_file_rejects_whole_batch(uploader, bad_index):
    files = [jpeg(f"{i}.jpg") for i in range(3)]
    files[bad_index] = jpeg("big.jpg", size=10 * MB + 1)
    with pytest.raises(TooLarge):
        MediaIntake(uploader).upload(files)
    assert uploader.uploaded == []


def test_wrong_type_rejects_whole_batch(uploader):
    files = [jpeg("ok.jpg"), IncomingFile(b"GIF89a", "image/gif", 6, "anim.gif")]
    with pytest.raises(InvalidType):
        MediaIntake(uploader).upload(files)
    assert uploader.uploaded == []


def test_declared_size_is_not_trusted(uploader):
    lying = IncomingFile(data=b"\xff" * 2048, content_type="image/png", size=10, filename="lying.png")
    with pytest.raises(TooLarge):
        MediaIntake(uploader, max_bytes=1024).upload([lying])


def test_empty_batch_rejected(uploader):
    with pytest.raises(ValidationError):
        MediaIntake(uploader).upload([])


def test_upload_requires_session(client, uploader):
    resp = client.post("/api/upload", files=[("files", ("a.jpg", b"\xff" * 10, "image/jpeg"))])
    assert resp.status_code == 401
    assert uploader.uploaded == []


def test_upload_returns_handles_in_order(client, citizen, uploader):
    files = [
        ("files", ("first.jpg", b"\xff" * 100, "image/jpeg")),
        ("files", ("second.png", PNG_BYTES, "image/png")),
        ("files", ("third.webp", b"RIFF" * 10, "image/webp")),
    ]
    resp = client.post("/api/upload", files=files, headers=citizen)
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert [h["media_id"] for h in data["images"]] == [
        "cityguardian/complaints/first.jpg",
        "cityguardian/complaints/second.png",
        "cityguardian/complaints/third.webp",
    ]
    assert data["images"][1]["byte_size"] == len(PNG_BYTES)


def test_twelve_megabyte_upload_rejected(client, citizen, uploader):
    files = [("files", ("huge.jpg", b"\xff" * (12 * MB), "image/jpeg"))]
    resp = client.post("/api/upload", files=files, headers=citizen)
    assert resp.status_code == 400
    assert "Maximum size is 10MB" in resp.json()["detail"]
    assert "images" not in resp.json()
    assert uploader.uploaded == []


def test_invalid_type_upload_rejected(client, citizen, uploader):
    files = [("files", ("doc.pdf", b"%PDF-1.4", "application/pdf"))]
    resp = client.post("/api/upload", files=files, headers=citizen)
    assert resp.status_code == 400
    assert "Invalid file type" in resp.json()["detail"]


def test_no_files_rejected(client, citizen):
    resp = client.post("/api/upload", headers=citizen)
    assert resp.status_code == 400


def test_partial_upstream_failure_cleans_up(client, citizen, uploader):
    uploader.fail_on.add("b.jpg")
    files = [
        ("files", ("a.jpg", b"\xff" * 10, "image/jpeg")),
        ("files", ("b.jpg", b"\xff" * 10, "image/jpeg")),
        ("files", ("c.jpg", b"\xff" * 10, "image/jpeg")),
    ]
    resp = client.post("/api/upload", files=files, headers=citizen)
    assert resp.status_code == 502
    assert resp.json() == {"detail": "Failed to upload images"}
    assert sorted(uploader.destroyed) == ["cityguardian/complaints/a.jpg", "cityguardian/complaints/c.jpg"]


def test_base64_fallback(client, citizen):
    resp = client.put("/api/upload", json={"images": [data_url(), data_url("image/jpeg")]}, headers=citizen)
    assert resp.status_code == 200
    images = resp.json()["images"]
    assert len(images) == 2
    assert images[0]["url"].startswith("data:image/png;base64,")
    assert images[0]["format"] == "png"
    assert images[0]["byte_size"] == len(PNG_BYTES)
    assert images[0]["media_id"] != images[1]["media_id"]


def test_base64_fallback_requires_session(client):
    resp = client.put("/api/upload", json={"images": [data_url()]})
    assert resp.status_code == 401


@pytest.mark.parametrize("image", [
    data_url("image/gif"),
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJ",
    "data:image/png;base64,!!!not-base64!!!",
])
def test_base64_fallback_validates_entries(client, citizen, image):
    resp = client.put("/api/upload", json={"images": [data_url(), image]}, headers=citizen)
    assert resp.status_code == 400


def test_base64_fallback_size_cap(uploader):
    with pytest.raises(TooLarge):
        MediaIntake(uploader, max_bytes=16).accept_base64([data_url()])


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


@pytest.fixture
def cloudinary():
    return CloudinaryUploader(cloud_name="demo", api_key="key", api_secret="secret", folder="test")


def test_cloudinary_upload_maps_response(monkeypatch, cloudinary):
    calls = []

    def fake_post(url, data=None, files=None, timeout=None):
        calls.append((url, data, files))
        return FakeResponse({
            "secure_url": "https://res.cloudinary.com/demo/image/upload/v1/test/a.jpg",
            "public_id": "test/a",
            "width": 1200,
            "height": 800,
            "format": "jpg",
            "bytes": 5120,
        })

    monkeypatch.setattr(media.requests, "post", fake_post)
    handle = cloudinary.upload(jpeg("a.jpg"))

    assert handle.media_id == "test/a"
    assert handle.byte_size == 5120
    url, data, files = calls[0]
    assert url == "https://api.cloudinary.com/v1_1/demo/image/upload"
    assert data["api_key"] == "key"
    assert data["folder"] == "test"
    assert data["transformation"] == "c_limit,w_1200,h_800/q_auto"
    assert "signature" in data
    assert files["file"][0] == "a.jpg"


def test_cloudinary_http_error_is_upstream_failure(monkeypatch, cloudinary):
    monkeypatch.setattr(media.requests, "post", lambda *a, **kw: FakeResponse({"error": "bad"}, 500))
    with pytest.raises(UpstreamFailure):
        cloudinary.upload(jpeg("a.jpg"))


def test_cloudinary_unreachable_is_upstream_failure(monkeypatch, cloudinary):
    def boom(*a, **kw):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(media.requests, "post", boom)
    with pytest.raises(UpstreamFailure):
        cloudinary.upload(jpeg("a.jpg"))


def test_unconfigured_cloudinary_fails_upstream():
    with pytest.raises(UpstreamFailure):
        CloudinaryUploader(cloud_name="", api_key="", api_secret="").upload(jpeg("a.jpg"))


def test_signature_sorts_params_and_skips_empty(cloudinary):
    expected = hashlib.sha1(b"folder=test&timestamp=100secret").hexdigest()
    assert cloudinary.sign({"timestamp": "100", "folder": "test", "eager": ""}) == expected


class CrashingUploader(FakeUploader):
    def upload(self, f):
        if f.filename == "bad.jpg":
            raise ValueError("unexpected response shape")
        return super().upload(f)


def test_unexpected_worker_error_cleans_up():
    crashing = CrashingUploader()
    with pytest.raises(UpstreamFailure):
        MediaIntake(crashing).upload([jpeg("ok1.jpg"), jpeg("bad.jpg"), jpeg("ok2.jpg")])
    assert sorted(crashing.destroyed) == ["cityguardian/complaints/ok1.jpg", "cityguardian/complaints/ok2.jpg"]


class UnreadableFile:
    def read(self):
        raise AssertionError("oversized upload should not be read")


class DeclaredUpload:
    def __init__(self, filename, size):
        self.filename = filename
        self.content_type = "image/jpeg"
        self.size = size
        self.file = UnreadableFile()


def test_declared_oversize_rejected_before_reading(uploader):
    session = SessionUser(id="u1", role="citizen", email="c@example.com", name="C",
                          expires=datetime.now(timezone.utc))
    with pytest.raises(TooLarge):
        upload_images(files=[DeclaredUpload("huge.jpg", 12 * MB)], session=session, intake=MediaIntake(uploader))
    assert uploader.uploaded == []


def test_oversized_second_file_rejects_batch(client, citizen, uploader):
    files = [
        ("files", ("small.jpg", b"\xff" * 10, "image/jpeg")),
        ("files", ("huge.jpg", b"\xff" * (11 * MB), "image/jpeg")),
    ]
    resp = client.post("/api/upload", files=files, headers=citizen)
    assert resp.status_code == 400
    assert uploader.uploaded == []
