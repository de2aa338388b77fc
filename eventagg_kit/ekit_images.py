import time
import logging
import posixpath
from typing import Any, Dict, Optional, Tuple

import httpx
from bson import Binary
from pymongo.asynchronous.database import AsyncDatabase

from eventagg_kit.ekit_ports import ImageUpload


logger = logging.getLogger("images")


MAX_IMAGE_SIZE = 10 * 1024 * 1024
DOWNLOAD_TIMEOUT = 30.0
USER_AGENT = "Mozilla/5.0 (compatible; EventAggregator/1.0)"

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


class ImageRelocationError(Exception):
    pass


def content_type_from_path(path: str) -> str:
    ext = posixpath.splitext(path)[1].lower().lstrip(".")
    return CONTENT_TYPES.get(ext, "application/octet-stream")


def bucket_collection_name(bucket: str) -> str:
    return "media_" + bucket.replace("-", "_")


class MongoImageStorage:
    """
    Copies remote images into MongoDB, one collection per bucket, documents
    keyed by path and overwritten on re-upload. Public URLs point at the
    /media route of the HTTP app.
    """

    def __init__(
        self,
        db: AsyncDatabase,
        public_url: str,
        max_size: int = MAX_IMAGE_SIZE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.public_url = public_url.rstrip("/")
        self.max_size = max_size
        self._transport = transport

    def url_for(self, bucket: str, path: str) -> str:
        return f"{self.public_url}/media/{bucket}/{path}"

    async def _download(self, source_url: str) -> Tuple[bytes, str]:
        """
        Streams the image, giving up as soon as the declared or received size
        passes max_size. Returns the body and the content-type header.
        """
        async with httpx.AsyncClient(transport=self._transport, follow_redirects=True) as client:
            async with client.stream("GET", source_url, headers={"User-Agent": USER_AGENT}, timeout=DOWNLOAD_TIMEOUT) as r:
                if r.status_code != 200:
                    raise ImageRelocationError(f"Failed to download image: HTTP {r.status_code}")
                declared = r.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > self.max_size:
                    raise ImageRelocationError(f"Image size {declared} exceeds maximum {self.max_size}")
                data = bytearray()
                async for chunk in r.aiter_bytes():
                    data.extend(chunk)
                    if len(data) > self.max_size:
                        raise ImageRelocationError(f"Image size exceeds maximum {self.max_size}")
                return bytes(data), r.headers.get("content-type", "")

    async def download_and_upload(self, source_url: str, bucket: str, path: str, content_type: Optional[str] = None) -> ImageUpload:
        if not source_url or not bucket or not path:
            raise ImageRelocationError("Image URL, bucket name, and file path are required")
        try:
            data, header_type = await self._download(source_url)
        except httpx.HTTPError as e:
            raise ImageRelocationError(f"Cannot download image from {source_url}: {type(e).__name__} {e}") from e
        if not content_type:
            content_type = header_type.split(";")[0].strip() or content_type_from_path(path)
        await self._overwrite(bucket, path, data, content_type)
        url = self.url_for(bucket, path)
        logger.info("relocated image %s -> %s/%s size=%d", source_url[:120], bucket, path, len(data))
        return ImageUpload(file_name=path, url=url)

    async def _overwrite(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        t = time.time()
        await self.db[bucket_collection_name(bucket)].update_one(
            {"path": path},
            {
                "$set": {
                    "data": Binary(data),
                    "content_type": content_type,
                    "mon_mtime": t,
                    "mon_size": len(data),
                },
                "$setOnInsert": {"mon_ctime": t},
            },
            upsert=True,
        )

    async def retrieve(self, bucket: str, path: str) -> Optional[Dict[str, Any]]:
        return await self.db[bucket_collection_name(bucket)].find_one({"path": path})
