"""
File storage backends

Uploaded bytes live either on local disk under a per-client directory or in
an S3-compatible bucket. Both backends expose the same small interface:
save, open (local only), signed_url (bucket only), delete, delete_prefix,
exists and list_keys.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Dict, List, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from errors import ApiError

logger = logging.getLogger(__name__)


class StorageError(ApiError):
    def __init__(self, message):
        super().__init__(500, "STORAGE_ERROR", message)


@dataclass
class StoredObject:
    """Where an upload ended up; copied onto the UploadedFile row."""

    provider: str
    path: str
    url: Optional[str]
    size: int


class LocalFileStorage:
    provider = "local"

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, path))
        if not full.startswith(self.root + os.sep):
            raise StorageError("Invalid storage path")
        return full

    def save(self, client_id: str, key: str, data: bytes, content_type: str) -> StoredObject:
        path = f"{client_id}/{key}"
        full = self._full_path(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        try:
            with open(full, "wb") as handle:
                handle.write(data)
        except OSError as e:
            logger.error(f"[STORAGE] Failed to write {path}: {e}")
            raise StorageError("Could not store file")
        logger.info(f"[STORAGE] Saved {path} ({len(data)} bytes)")
        return StoredObject(provider=self.provider, path=path, url=None, size=len(data))

    def open(self, path: str) -> str:
        """Absolute path of a stored file, for streaming with send_file."""
        full = self._full_path(path)
        if not os.path.isfile(full):
            raise FileNotFoundError(path)
        return full

    def exists(self, path: str) -> bool:
        try:
            return os.path.isfile(self._full_path(path))
        except StorageError:
            return False

    def signed_url(self, path: str, download_name: str = None, inline: bool = False) -> Optional[str]:
        return None  # served by streaming

    def delete(self, path: str) -> bool:
        try:
            full = self._full_path(path)
        except StorageError:
            return False
        if os.path.isfile(full):
            os.remove(full)
            logger.info(f"[STORAGE] Deleted {path}")
            return True
        return False

    def delete_prefix(self, client_id: str) -> int:
        directory = self._full_path(client_id)
        if not os.path.isdir(directory):
            return 0
        count = sum(len(files) for _, _, files in os.walk(directory))
        shutil.rmtree(directory)
        logger.info(f"[STORAGE] Removed {count} file(s) for client {client_id}")
        return count

    def list_keys(self) -> List[str]:
        keys = []
        for current, _, files in os.walk(self.root):
            for name in files:
                keys.append(os.path.relpath(os.path.join(current, name), self.root).replace(os.sep, "/"))
        return sorted(keys)


class S3FileStorage:
    provider = "s3"

    def __init__(self, bucket: str, region: str = None, endpoint_url: str = None,
                 access_key: str = None, secret_key: str = None,
                 url_ttl: int = 15 * 60, prefix: str = "client-files", client=None):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.url_ttl = url_ttl
        self.s3_client = client or boto3.client(
            "s3",
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            endpoint_url=endpoint_url,
            config=Config(signature_version="s3v4", connect_timeout=5, read_timeout=10,
                          retries={"max_attempts": 1}),
        )
        logger.info(f"[STARTUP] Object storage bucket: {bucket}")

    def _key(self, client_id: str, key: str) -> str:
        return f"{self.prefix}/{client_id}/{key}" if self.prefix else f"{client_id}/{key}"

    def save(self, client_id: str, key: str, data: bytes, content_type: str) -> StoredObject:
        object_key = self._key(client_id, key)
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=object_key,
                Body=data,
                ContentType=content_type,
                ServerSideEncryption="AES256",
                Metadata={"client-id": client_id},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[STORAGE] Upload of {object_key} failed: {e}")
            raise StorageError("Could not store file")
        logger.info(f"[STORAGE] Uploaded {object_key} to {self.bucket}")
        url = f"s3://{self.bucket}/{object_key}"
        return StoredObject(provider=self.provider, path=object_key, url=url, size=len(data))

    def open(self, path: str) -> str:
        raise FileNotFoundError(path)  # bucket objects are served through signed URLs

    def exists(self, path: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=path)
            return True
        except ClientError:
            return False
        except BotoCoreError as e:
            logger.error(f"[STORAGE] Could not check {path}: {e}")
            return False

    def signed_url(self, path: str, download_name: str = None, inline: bool = False) -> str:
        params: Dict[str, str] = {"Bucket": self.bucket, "Key": path}
        if download_name:
            disposition = "inline" if inline else "attachment"
            params["ResponseContentDisposition"] = f'{disposition}; filename="{download_name}"'
        try:
            return self.s3_client.generate_presigned_url(
                "get_object", Params=params, ExpiresIn=self.url_ttl, HttpMethod="GET"
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[STORAGE] Could not sign URL for {path}: {e}")
            raise StorageError("Could not generate download link")

    def delete(self, path: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=path)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[STORAGE] Delete of {path} failed: {e}")
            return False
        logger.info(f"[STORAGE] Deleted {path} from {self.bucket}")
        return True

    def delete_prefix(self, client_id: str) -> int:
        prefix = self._key(client_id, "")
        deleted = 0
        paginator = self.s3_client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                objects = [{"Key": item["Key"]} for item in page.get("Contents", [])]
                if not objects:
                    continue
                self.s3_client.delete_objects(Bucket=self.bucket, Delete={"Objects": objects, "Quiet": True})
                deleted += len(objects)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[STORAGE] Prefix delete for {client_id} failed: {e}")
            raise StorageError("Could not delete client files")
        logger.info(f"[STORAGE] Removed {deleted} object(s) for client {client_id}")
        return deleted

    def list_keys(self) -> List[str]:
        keys = []
        paginator = self.s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=f"{self.prefix}/" if self.prefix else ""):
            keys.extend(item["Key"] for item in page.get("Contents", []))
        return sorted(keys)


def build_storage(config):
    """Pick the storage backend named by STORAGE_BACKEND."""
    backend = (config.get("STORAGE_BACKEND") or "local").lower()
    if backend == "s3":
        if not config.get("S3_BUCKET"):
            raise RuntimeError("STORAGE_BACKEND=s3 requires S3_BUCKET")
        return S3FileStorage(
            bucket=config["S3_BUCKET"],
            region=config.get("S3_REGION"),
            endpoint_url=config.get("S3_ENDPOINT_URL"),
            access_key=config.get("AWS_ACCESS_KEY_ID"),
            secret_key=config.get("AWS_SECRET_ACCESS_KEY"),
            url_ttl=config.get("SIGNED_URL_TTL", 15 * 60),
        )
    return LocalFileStorage(config.get("UPLOAD_DIR") or "uploads")


def get_storage():
    return current_app.extensions["file_storage"]
