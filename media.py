"""Media intake: validates image batches and forwards them to Cloudinary."""
import base64
import binascii
import hashlib
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Sequence

import requests

from config import (ALLOWED_IMAGE_TYPES, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET, CLOUDINARY_CLOUD_NAME,
                    UPLOAD_FOLDER, UPLOAD_MAX_BYTES, UPLOAD_TIMEOUT_SECONDS, UPLOAD_TRANSFORMATION)
from errors import InvalidType, TooLarge, UpstreamFailure, ValidationError
from logger import get_logger
from schemas import MediaHandle

log = get_logger("media")

DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.+)$", re.DOTALL)
MAX_PARALLEL_UPLOADS = 8


@dataclass
class IncomingFile:
    data: bytes
    content_type: str
    size: int
    filename: str


def _mb(n: int) -> int:
    return n // (1024 * 1024)


def check_type(content_type: str, allowed: Sequence[str] = ALLOWED_IMAGE_TYPES):
    if content_type not in allowed:
        raise InvalidType(f"Invalid file type: {content_type}. Only JPEG, PNG, and WebP are allowed.")


def check_size(name: str, size: int, max_bytes: int = UPLOAD_MAX_BYTES):
    if size > max_bytes:
        raise TooLarge(f"File too large: {name}. Maximum size is {_mb(max_bytes)}MB.")


def validate_batch(files: Sequence[IncomingFile], max_bytes: int = UPLOAD_MAX_BYTES):
    """All-or-nothing: the first invalid file rejects the whole batch."""
    if not files:
        raise ValidationError("No files uploaded")
    for f in files:
        check_type(f.content_type)
        check_size(f.filename, max(f.size, len(f.data)), max_bytes)


class CloudinaryUploader:
    """Thin client for Cloudinary's signed upload/destroy REST endpoints."""

    api_base = "https://api.cloudinary.com/v1_1"

    def __init__(self, cloud_name: str = CLOUDINARY_CLOUD_NAME, api_key: str = CLOUDINARY_API_KEY,
                 api_secret: str = CLOUDINARY_API_SECRET, folder: str = UPLOAD_FOLDER,
                 transformation: str = UPLOAD_TRANSFORMATION, timeout: float = UPLOAD_TIMEOUT_SECONDS):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.transformation = transformation
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def sign(self, params: Dict[str, str]) -> str:
        to_sign = "&".join(f"{k}={v}" for k, v in sorted(params.items()) if v not in (None, ""))
        return hashlib.sha1((to_sign + self.api_secret).encode("utf-8")).hexdigest()

    def _signed(self, params: Dict[str, str]) -> Dict[str, str]:
        params = dict(params, timestamp=str(int(time.time())))
        params["signature"] = self.sign(params)
        params["api_key"] = self.api_key
        return params

    def _post(self, action: str, params: Dict[str, str], files=None) -> dict:
        if not self.configured:
            raise UpstreamFailure("Image storage is not configured")
        url = f"{self.api_base}/{self.cloud_name}/image/{action}"
        try:
            resp = requests.post(url, data=self._signed(params), files=files, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            log.error("Cloudinary %s failed: %s", action, e)
            raise UpstreamFailure()

    def upload(self, f: IncomingFile) -> MediaHandle:
        result = self._post(
            "upload",
            {"folder": self.folder, "transformation": self.transformation},
            files={"file": (f.filename, f.data, f.content_type)},
        )
        if not result.get("secure_url") or not result.get("public_id"):
            log.error("Cloudinary upload returned no handle for %s", f.filename)
            raise UpstreamFailure()
        return MediaHandle(
            url=result["secure_url"],
            media_id=result["public_id"],
            width=result.get("width"),
            height=result.get("height"),
            format=result.get("format"),
            byte_size=result.get("bytes"),
        )

    def destroy(self, media_id: str):
        self._post("destroy", {"public_id": media_id})


class MediaIntake:
    def __init__(self, uploader: CloudinaryUploader, max_bytes: int = UPLOAD_MAX_BYTES):
        self.uploader = uploader
        self.max_bytes = max_bytes

    def upload(self, files: Sequence[IncomingFile]) -> List[MediaHandle]:
        validate_batch(files, self.max_bytes)

        with ThreadPoolExecutor(max_workers=min(len(files), MAX_PARALLEL_UPLOADS)) as pool:
            futures = [pool.submit(self.uploader.upload, f) for f in files]
        handles: List[MediaHandle] = []
        failed = 0
        for fut in futures:
            try:
                handles.append(fut.result())
            except UpstreamFailure:
                failed += 1
            except Exception:
                log.exception("Upload worker failed")
                failed += 1

        if failed:
            log.error("%d of %d uploads failed; discarding %d stored image(s)", failed, len(files), len(handles))
            self._discard(handles)
            raise UpstreamFailure()

        log.info("%d image(s) uploaded", len(handles))
        return handles

    def _discard(self, handles: List[MediaHandle]):
        for handle in handles:
            try:
                self.uploader.destroy(handle.media_id)
            except UpstreamFailure:
                log.warning("Could not remove orphaned image %s", handle.media_id)

    def accept_base64(self, images: Sequence[str]) -> List[MediaHandle]:
        """Fallback path: keep data URLs as-is, after the same type/size checks as uploads."""
        if not images:
            raise ValidationError("No images provided")

        stamp = int(time.time() * 1000)
        handles = []
        for index, image in enumerate(images):
            m = DATA_URL_RE.match(image or "")
            if not m:
                raise ValidationError(f"Image {index + 1} is not a base64 data URL")
            check_type(m.group("mime"))
            try:
                raw = base64.b64decode(m.group("payload"), validate=True)
            except (binascii.Error, ValueError):
                raise ValidationError(f"Image {index + 1} is not valid base64")
            check_size(f"image {index + 1}", len(raw), self.max_bytes)
            handles.append(MediaHandle(
                url=image,
                media_id=f"complaint_{stamp}_{index}",
                format=m.group("mime").split("/", 1)[1],
                byte_size=len(raw),
            ))
        return handles


def default_uploader() -> CloudinaryUploader:
    uploader = CloudinaryUploader()
    if not uploader.configured:
        log.warning("Cloudinary credentials missing; uploads will fail until configured")
    return uploader
