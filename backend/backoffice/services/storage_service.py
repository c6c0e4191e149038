# Overview: Object storage for payment and delivery proofs (local filesystem adapter).

from __future__ import annotations

import os
import time
from typing import Mapping

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from ..errors import ExternalServiceError, ValidationError
from .collaborators import get_collaborator
from .side_effects import SideEffectTimeout, run_with_timeout

MAX_PROOF_BYTES = 5 * 1024 * 1024
ALLOWED_PROOF_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}

_SIGNING_SALT = "backoffice-storage"


class LocalFileStorage:
    """
    Stores objects under ``<root>/<bucket>/<path>``.

    Public URLs are ``<public_base_url>/<bucket>/<path>``; signed URLs carry
    an itsdangerous token that expires after ``ttl_seconds``.
    """

    def __init__(self, root: str, public_base_url: str, secret_key: str, default_ttl: int = 3600):
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")
        self.default_ttl = default_ttl
        self._serializer = URLSafeTimedSerializer(secret_key, salt=_SIGNING_SALT)

    @classmethod
    def from_config(cls, config: Mapping) -> "LocalFileStorage":
        return cls(
            root=config.get("STORAGE_ROOT", "storage"),
            public_base_url=config.get("STORAGE_PUBLIC_BASE_URL", "/storage"),
            secret_key=config["SECRET_KEY"],
            default_ttl=int(config.get("SIGNED_URL_TTL_SECONDS", 3600)),
        )

    def _full_path(self, bucket: str, path: str) -> str:
        parts = [bucket, *path.split("/")]
        if any(p in ("", ".", "..") for p in parts):
            raise ValidationError(f"Invalid storage path '{bucket}/{path}'", field="path")
        return os.path.join(self.root, *parts)

    def upload(self, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        full = self._full_path(bucket, path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        # upsert semantics: re-uploading a proof replaces the previous file
        with open(full, "wb") as fh:
            fh.write(data)
        return path

    def exists(self, bucket: str, path: str) -> bool:
        return os.path.isfile(self._full_path(bucket, path))

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/{bucket}/{path}"

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int | None = None) -> str:
        self._full_path(bucket, path)
        token = self._serializer.dumps({"b": bucket, "p": path, "ttl": ttl_seconds or self.default_ttl})
        return f"{self.public_base_url}/signed/{token}"

    def resolve_signed_token(self, token: str) -> tuple[str, str]:
        """Return (bucket, path) for a signed-URL token, or raise ValidationError."""
        try:
            data = self._serializer.loads(token)
            # second pass enforces the ttl embedded at signing time
            self._serializer.loads(token, max_age=int(data["ttl"]))
        except SignatureExpired:
            raise ValidationError("Signed URL has expired", field="token")
        except (BadSignature, KeyError, TypeError, ValueError):
            raise ValidationError("Invalid signed URL", field="token")
        return data["b"], data["p"]


def read_proof_file(file: FileStorage, *, field: str = "file") -> tuple[bytes, str, str]:
    """Validate an uploaded proof; returns (data, extension, content_type)."""
    if file is None or not getattr(file, "filename", None):
        raise ValidationError("A proof file is required", code="MISSING_REQUIRED_FIELD", field=field)
    content_type = (file.mimetype or file.content_type or "").lower()
    if content_type not in ALLOWED_PROOF_TYPES:
        raise ValidationError(
            f"Unsupported file type '{content_type}'. Allowed: {', '.join(sorted(ALLOWED_PROOF_TYPES))}",
            field=field,
        )
    data = file.read()
    if not data:
        raise ValidationError("The proof file is empty", field=field)
    if len(data) > MAX_PROOF_BYTES:
        raise ValidationError("The proof file exceeds 5MB", field=field)
    filename = secure_filename(file.filename) or "proof"
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else content_type.split("/")[-1]
    return data, ext, content_type


def store_proof(file: FileStorage, *, bucket: str, folder: str, prefix: str) -> str:
    """
    Upload a proof file and return its public URL.

    Bounded by SIDE_EFFECT_TIMEOUT_SECONDS. Proof uploads are on the critical
    path: any storage failure raises ExternalServiceError and the caller must
    not change state.
    """
    data, ext, content_type = read_proof_file(file)
    path = f"{folder}/{prefix}_{int(time.time() * 1000)}.{ext}"
    storage = get_collaborator("storage")
    try:
        run_with_timeout(storage.upload, bucket, path, data, content_type)
    except SideEffectTimeout as exc:
        raise ExternalServiceError(f"Storage upload timed out: {exc}", context={"bucket": bucket, "path": path})
    except ValidationError:
        raise
    except Exception as exc:
        current_app.logger.error("Storage upload failed for %s/%s: %s", bucket, path, exc)
        raise ExternalServiceError(f"Storage upload failed: {exc}", context={"bucket": bucket, "path": path})
    return storage.get_public_url(bucket, path)
