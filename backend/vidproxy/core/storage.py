"""Storage gateway with interchangeable backends.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
Exactly one backend is active per process; it is chosen from
``STORAGE_BACKEND`` when the gateway is first built and never changes.
Misconfiguration raises StorageConfigurationError instead of silently
falling back to another backend.
"""

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from vidproxy.core.config import settings
from vidproxy.core.errors import (
    StorageConfigurationError,
    StorageError,
    StorageNotFound,
    StoragePermissionDenied,
    StorageUnavailable,
)
from vidproxy.core.metrics import STORAGE_OPERATIONS_TOTAL

logger = logging.getLogger(__name__)


@dataclass
class StorageResult:
    """Locator returned by a successful put."""
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None


@dataclass
class StorageHealth:
    """Outcome of a backend health check."""
    healthy: bool
    backend: str
    error: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./uploads"
    public_base_url: str = "http://localhost:8000"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False

    @classmethod
    def from_settings(cls) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            use_ssl=settings.STORAGE_USE_SSL,
            local_path=settings.LOCAL_STORAGE_PATH,
            public_base_url=settings.PUBLIC_BASE_URL,
            cdn_domain=settings.CDN_DOMAIN,
            cdn_enabled=settings.CDN_ENABLED,
        )


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    Backends raise StorageNotFound, StorageUnavailable or
    StoragePermissionDenied; they never retry internally.
    """

    name: str = "abstract"

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        """Store ``data`` under ``key``."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the object stored under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete ``key``. Raises StorageNotFound if it does not exist."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether ``key`` exists."""

    @abstractmethod
    def sign(self, key: str, expires_in: int = 900) -> str:
        """URL for reading ``key``. Not every backend produces expiring URLs."""

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Stable, non-expiring URL for ``key``."""

    @abstractmethod
    def health_check(self) -> StorageHealth:
        """Check that the backend is reachable."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend.

    Writes go to a hidden temporary file in the destination directory and
    are renamed into place, so a key never points at a half-written file.
    """

    name = "local"

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = config.public_base_url.rstrip("/")

    def _get_full_path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if path != self.base_path and self.base_path not in path.parents:
            raise StoragePermissionDenied(f"Key escapes storage root: {key}", key=key)
        return path

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        dest_path = self._get_full_path(key)
        tmp_name = None
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=dest_path.parent,
                prefix=f".{dest_path.name}.",
                suffix=".part",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, dest_path)
            tmp_name = None
        except PermissionError as e:
            raise StoragePermissionDenied(f"Cannot write {key}: {e}", key=key) from e
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {key}: {e}", key=key) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning(f"Could not remove partial upload {tmp_name}")

        return StorageResult(
            key=key,
            url=self.public_url(key),
            file_size=len(data),
        )

    def get(self, key: str) -> bytes:
        path = self._get_full_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise StorageNotFound(f"Object not found: {key}", key=key) from e
        except PermissionError as e:
            raise StoragePermissionDenied(f"Cannot read {key}: {e}", key=key) from e
        except OSError as e:
            raise StorageUnavailable(f"Cannot read {key}: {e}", key=key) from e

    def delete(self, key: str) -> bool:
        path = self._get_full_path(key)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise StorageNotFound(f"Object not found: {key}", key=key) from e
        except PermissionError as e:
            raise StoragePermissionDenied(f"Cannot delete {key}: {e}", key=key) from e
        except OSError as e:
            raise StorageUnavailable(f"Cannot delete {key}: {e}", key=key) from e
        return True

    def exists(self, key: str) -> bool:
        return self._get_full_path(key).is_file()

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/uploads/{quote(key)}"

    def sign(self, key: str, expires_in: int = 900) -> str:
        # No native expiring URLs on a plain filesystem
        return self.public_url(key)

    def health_check(self) -> StorageHealth:
        if self.base_path.is_dir() and os.access(self.base_path, os.W_OK):
            return StorageHealth(healthy=True, backend=self.name)
        return StorageHealth(
            healthy=False,
            backend=self.name,
            error=f"{self.base_path} is not a writable directory",
        )


_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404", "NoSuchBucket"}
_PERMISSION_CODES = {"AccessDenied", "403", "AllAccessDisabled", "AccountProblem"}


def _translate_boto_error(exc: Exception, key: Optional[str], operation: str) -> StorageError:
    """Map botocore exceptions onto the storage error taxonomy."""
    if isinstance(exc, ClientError):
        code = str(exc.response.get("Error", {}).get("Code", ""))
        if code in _NOT_FOUND_CODES:
            return StorageNotFound(f"Object not found: {key}", key=key)
        if code in _PERMISSION_CODES:
            return StoragePermissionDenied(f"{operation} denied for {key}: {code}", key=key)
        return StorageUnavailable(f"{operation} failed for {key}: {code or exc}", key=key)
    return StorageUnavailable(f"{operation} failed for {key}: {exc}", key=key)


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    name = "s3"

    def __init__(self, config: StorageConfig, client=None):
        if not config.bucket:
            raise StorageConfigurationError(
                "STORAGE_BUCKET is required when STORAGE_BACKEND is s3/minio"
            )
        self.config = config
        self._client = client

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
            }
            if self.config.access_key and self.config.secret_key:
                client_kwargs["aws_access_key_id"] = self.config.access_key
                client_kwargs["aws_secret_access_key"] = self.config.secret_key

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )
                if not self.config.use_ssl:
                    client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)
        return self._client

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        try:
            response = self._get_client().put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_boto_error(e, key, "put") from e

        return StorageResult(
            key=key,
            url=self.public_url(key),
            file_size=len(data),
            etag=response.get("ETag", "").strip('"') or None,
        )

    def get(self, key: str) -> bytes:
        try:
            response = self._get_client().get_object(Bucket=self.config.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise _translate_boto_error(e, key, "get") from e

    def delete(self, key: str) -> bool:
        # S3 deletes are silent for absent keys; check first so callers see NotFound
        if not self.exists(key):
            raise StorageNotFound(f"Object not found: {key}", key=key)
        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate_boto_error(e, key, "delete") from e
        return True

    def exists(self, key: str) -> bool:
        try:
            self._get_client().head_object(Bucket=self.config.bucket, Key=key)
            return True
        except (ClientError, BotoCoreError) as e:
            error = _translate_boto_error(e, key, "head")
            if isinstance(error, StorageNotFound):
                return False
            raise error from e

    def public_url(self, key: str) -> str:
        if self.config.cdn_enabled and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{quote(key)}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{quote(key)}"
        region = self.config.region or "us-east-1"
        return f"https://{self.config.bucket}.s3.{region}.amazonaws.com/{quote(key)}"

    def sign(self, key: str, expires_in: int = 900) -> str:
        if self.config.cdn_enabled and self.config.cdn_domain:
            return self.public_url(key)
        try:
            return self._get_client().generate_presigned_url(
                "get_object",
                Params={"Bucket": self.config.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_boto_error(e, key, "sign") from e

    def health_check(self) -> StorageHealth:
        try:
            self._get_client().head_bucket(Bucket=self.config.bucket)
            return StorageHealth(healthy=True, backend=self.name)
        except (ClientError, BotoCoreError) as e:
            return StorageHealth(healthy=False, backend=self.name, error=str(e))


def create_backend(config: StorageConfig) -> StorageBackend:
    """Build the backend named by ``config.backend``."""
    backend_type = (config.backend or "").lower()

    if backend_type == "local":
        return LocalStorage(config)
    if backend_type in ("s3", "minio", "aws"):
        return S3Storage(config)
    raise StorageConfigurationError(f"Unsupported storage backend: {config.backend!r}")


class Storage:
    """Storage gateway used by the rest of the application.

    Callers only see this interface; the concrete backend is fixed at
    construction.
    """

    _instance: Optional["Storage"] = None

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        backend: Optional[StorageBackend] = None,
    ):
        self.config = config or StorageConfig.from_settings()
        self._backend = backend or create_backend(self.config)
        logger.info(f"Storage gateway using {self._backend.name} backend")

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @classmethod
    def get_instance(cls) -> "Storage":
        """Get singleton storage instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    @contextmanager
    def _track(self, operation: str):
        try:
            yield
        except StorageError as e:
            STORAGE_OPERATIONS_TOTAL.labels(self._backend.name, operation, type(e).__name__).inc()
            raise
        STORAGE_OPERATIONS_TOTAL.labels(self._backend.name, operation, "ok").inc()

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        with self._track("put"):
            result = self._backend.put(key, data, content_type)
        logger.info(f"Stored {key} ({result.file_size} bytes)")
        return result

    def get(self, key: str) -> bytes:
        with self._track("get"):
            return self._backend.get(key)

    def delete(self, key: str) -> bool:
        with self._track("delete"):
            deleted = self._backend.delete(key)
        logger.info(f"Deleted {key}")
        return deleted

    def exists(self, key: str) -> bool:
        with self._track("exists"):
            return self._backend.exists(key)

    def sign(self, key: str, expires_in: Optional[int] = None) -> str:
        with self._track("sign"):
            return self._backend.sign(key, expires_in or settings.SIGNED_URL_TTL_SECONDS)

    def public_url(self, key: str) -> str:
        return self._backend.public_url(key)

    def health_check(self) -> StorageHealth:
        return self._backend.health_check()


def get_storage() -> Storage:
    """Get the default storage instance."""
    return Storage.get_instance()


class StorageService:
    """Async wrapper running blocking gateway calls in the default executor."""

    def __init__(self, storage: Optional[Storage] = None):
        self._storage = storage

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        return await self._run(self.storage.put, key, data, content_type)

    async def get(self, key: str) -> bytes:
        return await self._run(self.storage.get, key)

    async def delete(self, key: str) -> bool:
        return await self._run(self.storage.delete, key)

    async def exists(self, key: str) -> bool:
        return await self._run(self.storage.exists, key)

    async def sign(self, key: str, expires_in: Optional[int] = None) -> str:
        return await self._run(self.storage.sign, key, expires_in)

    async def health_check(self) -> StorageHealth:
        return await self._run(self.storage.health_check)
