import asyncio
import time
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import httpx


logger = logging.getLogger("vault")


VAULT_KV_MOUNT = "kv"
VAULT_PATH_PREFIX = "eventagg"
TOKEN_CACHE_TTL = 300


class TokenStoreError(Exception):
    pass


def secret_name(page_id: str) -> str:
    return f"facebook-token-{page_id}"


class VaultTokenStore:
    """
    Page access tokens in Vault KV v2, one secret per page under
    kv/eventagg/facebook-token-<page_id>. Reads are cached briefly, writes
    and deletes invalidate the cache.
    """

    def __init__(
        self,
        endpoint: str,
        vault_token: str,
        mount: str = VAULT_KV_MOUNT,
        prefix: str = VAULT_PATH_PREFIX,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.mount = mount
        self.prefix = prefix
        self.timeout = timeout
        self._vault_token = vault_token
        self._transport = transport
        self._cache: Dict[str, str] = {}
        self._cache_expires: Dict[str, float] = {}
        self._generation: Dict[str, int] = {}
        self._inflight: Dict[str, "asyncio.Future[Optional[str]]"] = {}

    def _url(self, kind: str, page_id: str) -> str:
        return f"{self.endpoint}/v1/{self.mount}/{kind}/{self.prefix}/{secret_name(page_id)}"

    def _headers(self) -> Dict[str, str]:
        return {"X-Vault-Token": self._vault_token}

    def _forget(self, page_id: str) -> None:
        self._cache.pop(page_id, None)
        self._cache_expires.pop(page_id, None)
        self._generation[page_id] = self._generation.get(page_id, 0) + 1
        self._inflight.pop(page_id, None)

    async def get(self, page_id: str) -> Optional[str]:
        if time.time() < self._cache_expires.get(page_id, 0):
            return self._cache[page_id]
        # concurrent readers of one page share a single request, other pages are not blocked
        task = self._inflight.get(page_id)
        if task is None:
            task = asyncio.ensure_future(self._read(page_id))
            self._inflight[page_id] = task
            task.add_done_callback(lambda done: self._read_finished(page_id, done))
        return await asyncio.shield(task)

    def _read_finished(self, page_id: str, done: "asyncio.Future[Optional[str]]") -> None:
        if self._inflight.get(page_id) is done:
            del self._inflight[page_id]

    async def _read(self, page_id: str) -> Optional[str]:
        generation = self._generation.get(page_id, 0)
        t = time.time()
        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                r = await client.get(self._url("data", page_id), headers=self._headers(), timeout=self.timeout)
            except httpx.HTTPError as e:
                logger.error("vault read for page %s failed: %s", page_id, e)
                raise TokenStoreError(f"vault read failed for page {page_id}") from e
        if r.status_code == 404:
            logger.info("no token in vault for page %s", page_id)
            return None
        if r.status_code != 200:
            # r.text may echo parts of the request, keep it short
            logger.error("vault read for page %s status %s: %s", page_id, r.status_code, r.text[:100])
            raise TokenStoreError(f"vault read failed for page {page_id} with status {r.status_code}")
        token = r.json()["data"]["data"].get("token")
        if not token:
            return None
        if generation == self._generation.get(page_id, 0):  # not written or deleted while reading
            self._cache[page_id] = token
            self._cache_expires[page_id] = t + TOKEN_CACHE_TTL
        return token

    async def put(self, page_id: str, secret: str, ttl_days: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "data": {
                "token": secret,
                "page_id": page_id,
                "stored_at": now.isoformat(),
                "expires_at": (now + timedelta(days=ttl_days)).isoformat(),
            }
        }
        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                r = await client.post(self._url("data", page_id), headers=self._headers(), json=payload, timeout=self.timeout)
            except httpx.HTTPError as e:
                logger.error("vault write for page %s failed: %s", page_id, e)
                raise TokenStoreError(f"vault write failed for page {page_id}") from e
        if r.status_code not in (200, 204):
            logger.error("vault write for page %s status %s: %s", page_id, r.status_code, r.text[:100])
            raise TokenStoreError(f"vault write failed for page {page_id} with status {r.status_code}")
        self._forget(page_id)
        logger.info("stored token for page %s, valid for %d days", page_id, ttl_days)
        return secret_name(page_id)

    async def delete(self, page_id: str) -> None:
        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                r = await client.delete(self._url("metadata", page_id), headers=self._headers(), timeout=self.timeout)
            except httpx.HTTPError as e:
                raise TokenStoreError(f"vault delete failed for page {page_id}") from e
        self._forget(page_id)
        if r.status_code not in (200, 204, 404):
            raise TokenStoreError(f"vault delete failed for page {page_id} with status {r.status_code}")
        logger.info("deleted token for page %s", page_id)
