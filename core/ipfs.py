"""
core/ipfs.py: IPFS Document Storage
======================================
Pins property metadata and deed documents, returns their CIDs.

Two backends, picked by IPFS_BACKEND in .env:
  1. "simulation" : content-addressed in-memory store (default)
  2. "web3storage": web3.storage HTTP upload API, read back via the gateway

All modules call: from core.ipfs import ipfs
"""

import base64
import json
import logging
from datetime import datetime

import httpx

from config import settings
from core.crypto import crypto_engine
from core.errors import IPFSError

logger = logging.getLogger("deedchain.ipfs")


def gateway_url(cid: str) -> str:
    return settings.IPFS_GATEWAY_TEMPLATE.format(cid=cid)


def build_property_metadata(property_data: dict) -> dict:
    """The JSON document pinned for every registered property."""
    return {
        "title": property_data.get("title"),
        "description": property_data.get("description"),
        "location": property_data.get("location"),
        "coordinates": property_data.get("coordinates"),
        "size": property_data.get("size"),
        "owner": property_data.get("ownerWalletAddress") or property_data.get("owner"),
        "documents": property_data.get("documents", []),
        "timestamp": datetime.utcnow().isoformat(),
        "documentType": "land_deed",
    }


class _BaseIPFS:

    async def _put(self, content: bytes, name: str) -> str:
        raise NotImplementedError

    async def _get(self, cid: str) -> bytes:
        raise NotImplementedError

    async def upload_property_metadata(self, property_data: dict) -> dict:
        metadata = build_property_metadata(property_data)
        body = json.dumps(metadata, indent=2).encode()
        stamp = int(datetime.utcnow().timestamp() * 1000)
        try:
            cid = await self._put(body, f"DeedChain-Property-{stamp}.json")
        except IPFSError:
            raise
        except Exception as e:
            logger.error(f"IPFS upload failed: {e}")
            raise IPFSError("Failed to upload property metadata to IPFS") from e
        logger.info(f"Property metadata uploaded to IPFS with CID: {cid}")
        return {"cid": cid, "url": gateway_url(cid)}

    async def upload_document(self, content: bytes, file_name: str) -> dict:
        if len(content) > settings.MAX_FILE_SIZE:
            raise IPFSError(f"{file_name} exceeds {settings.MAX_FILE_SIZE} bytes")
        try:
            cid = await self._put(content, file_name)
        except IPFSError:
            raise
        except Exception as e:
            logger.error(f"Document upload failed: {e}")
            raise IPFSError("Failed to upload document to IPFS") from e
        logger.info(f"Document uploaded to IPFS with CID: {cid}")
        return {"cid": cid, "url": gateway_url(cid)}

    async def retrieve_metadata(self, cid: str) -> dict:
        try:
            return json.loads(await self._get(cid))
        except IPFSError:
            raise
        except Exception as e:
            logger.error(f"IPFS retrieval failed: {e}")
            raise IPFSError("Failed to retrieve metadata from IPFS") from e


# ── Simulated IPFS (default) ──────────────────────────────────────────────────
class SimulatedIPFS(_BaseIPFS):
    """Deterministic fake CIDs; same bytes always give the same CID."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}

    def reset(self):
        self.objects.clear()

    @staticmethod
    def compute_cid(content: bytes) -> str:
        digest = base64.b32encode(crypto_engine.hash_bytes(content)).decode().lower().rstrip("=")
        return f"bafy{digest}"

    async def connect(self):
        logger.info("SimulatedIPFS: ready (in-memory mode)")

    async def close(self):
        pass

    async def ping(self) -> str:
        return f"ok (simulated ipfs, {len(self.objects)} objects)"

    async def _put(self, content: bytes, name: str) -> str:
        cid = self.compute_cid(content)
        self.objects[cid] = content
        return cid

    async def _get(self, cid: str) -> bytes:
        if cid not in self.objects:
            raise IPFSError(f"Failed to get {cid}")
        return self.objects[cid]


# ── web3.storage ──────────────────────────────────────────────────────────────
class Web3StorageIPFS(_BaseIPFS):
    """
    Requires: WEB3_STORAGE_TOKEN in .env
    Uploads go to WEB3_STORAGE_API_URL/upload, reads go through the public gateway.
    """

    def __init__(self):
        self.client: httpx.AsyncClient | None = None

    async def connect(self):
        if not settings.WEB3_STORAGE_TOKEN:
            raise ValueError("WEB3_STORAGE_TOKEN is not set in .env!")
        self.client = httpx.AsyncClient(timeout=settings.IPFS_TIMEOUT, follow_redirects=True)
        logger.info(f"web3.storage client ready ({settings.WEB3_STORAGE_API_URL})")

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None

    async def ping(self) -> str:
        return "ok: web3.storage" if self.client else "disconnected"

    def _client(self) -> httpx.AsyncClient:
        if self.client is None:
            raise IPFSError("IPFS client not connected")
        return self.client

    async def _put(self, content: bytes, name: str) -> str:
        response = await self._client().post(
            f"{settings.WEB3_STORAGE_API_URL.rstrip('/')}/upload",
            content=content,
            headers={
                "Authorization": f"Bearer {settings.WEB3_STORAGE_TOKEN}",
                "X-Name": name,
            },
        )
        response.raise_for_status()
        return response.json()["cid"]

    async def _get(self, cid: str) -> bytes:
        response = await self._client().get(gateway_url(cid))
        if response.status_code != 200:
            raise IPFSError(f"Failed to get {cid}")
        return response.content


def _create_ipfs():
    backend = settings.IPFS_BACKEND.lower()
    if backend == "web3storage":
        logger.info("Using web3.storage IPFS backend")
        return Web3StorageIPFS()
    logger.info("Using Simulated IPFS backend (development mode)")
    return SimulatedIPFS()


# Singleton, import this everywhere:  from core.ipfs import ipfs
ipfs = _create_ipfs()
