"""
core/blockchain.py: Blockchain Backend
=========================================
Thin wrappers over the two DeedChain contracts:
  - DeedNFT     : one ERC-721 token per verified property
  - LandRegistry: on-chain registration / verification record

Two backends:
  1. "simulation": in-memory contracts, no external dependencies (default)
  2. "ethereum"  : web3.py against any EVM JSON-RPC node

Set BLOCKCHAIN_BACKEND in .env to switch.
All modules call: from core.blockchain import blockchain
"""

import asyncio
import json
import logging
import time
from datetime import datetime

from config import settings
from core.crypto import crypto_engine
from core.errors import ChainError, ErrorCode

logger = logging.getLogger("deedchain.blockchain")

ZERO_ADDRESS = "0x" + "0" * 40


# ── Contract ABIs (only the functions the API calls) ──────────────────────────
DEED_NFT_ABI = [
    {
        "type": "function", "name": "mintDeed", "stateMutability": "nonpayable",
        "inputs": [{"name": "to", "type": "address"}, {"name": "tokenURI", "type": "string"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function", "name": "ownerOf", "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function", "name": "transferFrom", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "tokenId", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function", "name": "tokenURI", "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "type": "event", "name": "Transfer", "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
        ],
    },
]

LAND_REGISTRY_ABI = [
    {
        "type": "function", "name": "registerProperty", "stateMutability": "nonpayable",
        "inputs": [{"name": "ipfsHash", "type": "string"}, {"name": "location", "type": "string"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function", "name": "verifyProperty", "stateMutability": "nonpayable",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [],
    },
    {
        "type": "function", "name": "getProperty", "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{
            "name": "", "type": "tuple",
            "components": [
                {"name": "id", "type": "uint256"},
                {"name": "owner", "type": "address"},
                {"name": "ipfsHash", "type": "string"},
                {"name": "verified", "type": "bool"},
            ],
        }],
    },
]


def token_uri_for(ipfs_hash: str) -> str:
    return f"ipfs://{ipfs_hash}"


# ── Simulated Chain (default: works with zero setup) ─────────────────────────
class SimulatedChain:
    """
    In-memory DeedNFT + LandRegistry.
    Perfect for development and tests: no node, no keys, no gas.
    State resets when the server restarts (the DB keeps the token ids).
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.tokens: dict[int, dict] = {}       # tokenId → {owner, tokenURI}
        self.verified: set[int] = set()
        self.registry: dict[int, dict] = {}     # registryId → {owner, ipfsHash, location}
        self.transactions: list[dict] = []
        self._next_token_id = 1
        self._next_registry_id = 1
        self.signer = "0x" + crypto_engine.hash_sha3("deedchain-simulated-signer")[:40]

    async def connect(self):
        logger.info("SimulatedChain: ready (in-memory mode)")

    async def disconnect(self):
        logger.info("SimulatedChain: disconnected")

    async def ping(self) -> str:
        return f"ok (simulated chain, {len(self.transactions)} txs, {len(self.tokens)} deeds)"

    def _record_tx(self, method: str, args: dict) -> str:
        payload = json.dumps({
            "n": len(self.transactions),
            "method": method,
            "args": args,
            "timestamp": datetime.utcnow().isoformat(),
        }, sort_keys=True)
        tx_hash = "0x" + crypto_engine.hash_sha3(payload)
        self.transactions.append({"hash": tx_hash, "method": method, "args": args})
        logger.info(f"Tx #{len(self.transactions)} [{method}] hash={tx_hash[:18]}...")
        return tx_hash

    def _token(self, token_id) -> dict:
        token = self.tokens.get(int(token_id))
        if token is None:
            raise ChainError(f"ERC721: invalid token ID {token_id}", ErrorCode.CONTRACT_ERROR)
        return token

    async def mint_deed_nft(self, owner_address: str, ipfs_hash: str) -> dict:
        logger.info(f"Minting NFT for owner: {owner_address}, IPFS: {ipfs_hash}")
        token_id = self._next_token_id
        self._next_token_id += 1
        self.tokens[token_id] = {"owner": owner_address.lower(), "tokenURI": token_uri_for(ipfs_hash)}
        tx_hash = self._record_tx("mintDeed", {"to": owner_address.lower(), "tokenId": token_id})
        logger.info(f"NFT minted successfully with token ID: {token_id}")
        return {"tokenId": token_id, "txHash": tx_hash}

    async def verify_property(self, token_id) -> dict:
        self._token(token_id)
        self.verified.add(int(token_id))
        tx_hash = self._record_tx("verifyProperty", {"tokenId": int(token_id)})
        logger.info(f"Property {token_id} verified on-chain")
        return {"txHash": tx_hash}

    async def transfer_ownership(self, token_id, from_address: str, to_address: str) -> dict:
        token = self._token(token_id)
        if token["owner"] != from_address.lower():
            raise ChainError("ERC721: transfer from incorrect owner", ErrorCode.TRANSACTION_FAILED)
        token["owner"] = to_address.lower()
        tx_hash = self._record_tx("transferFrom", {
            "from": from_address.lower(), "to": to_address.lower(), "tokenId": int(token_id),
        })
        logger.info(f"Ownership transferred for token {token_id} from {from_address} to {to_address}")
        return {"txHash": tx_hash}

    async def register_property(self, ipfs_hash: str, location: str) -> dict:
        registry_id = self._next_registry_id
        self._next_registry_id += 1
        self.registry[registry_id] = {"owner": self.signer, "ipfsHash": ipfs_hash, "location": location}
        tx_hash = self._record_tx("registerProperty", {"ipfsHash": ipfs_hash, "location": location})
        return {"registryId": registry_id, "txHash": tx_hash}

    async def get_property(self, token_id) -> dict:
        token = self._token(token_id)
        return {
            "id": str(int(token_id)),
            "owner": token["owner"],
            "ipfsHash": token["tokenURI"].removeprefix("ipfs://"),
            "verified": int(token_id) in self.verified,
        }


# ── Ethereum Backend ──────────────────────────────────────────────────────────
class EthereumChain:
    """
    Connects to a real EVM node (local Hardhat / Ganache or a public network).
    Requires: BLOCKCHAIN_RPC_URL, PRIVATE_KEY, DEED_NFT_ADDRESS and
    LAND_REGISTRY_ADDRESS in .env

    web3.py is blocking, so every call runs in a worker thread.
    Writes hold a lock so nonces are handed out one transaction at a time.
    """

    def __init__(self):
        self.w3 = None
        self.account = None
        self.deed_nft = None
        self.land_registry = None
        self._write_lock = asyncio.Lock()

    async def connect(self):
        from web3 import Web3

        self.w3 = Web3(Web3.HTTPProvider(
            settings.BLOCKCHAIN_RPC_URL, request_kwargs={"timeout": settings.TX_TIMEOUT}
        ))
        if not await asyncio.to_thread(self.w3.is_connected):
            raise ConnectionError(f"Cannot connect to {settings.BLOCKCHAIN_RPC_URL}")
        if not settings.PRIVATE_KEY:
            raise ValueError("PRIVATE_KEY is not set in .env!")
        self.account = self.w3.eth.account.from_key(settings.PRIVATE_KEY)
        self.deed_nft = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.DEED_NFT_ADDRESS), abi=DEED_NFT_ABI
        )
        self.land_registry = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.LAND_REGISTRY_ADDRESS), abi=LAND_REGISTRY_ABI
        )
        block = await asyncio.to_thread(lambda: self.w3.eth.block_number)
        logger.info(f"Ethereum connected: block #{block}, signer {self.account.address}")

    async def disconnect(self):
        self.w3 = None

    async def ping(self) -> str:
        if self.w3 and await asyncio.to_thread(self.w3.is_connected):
            block = await asyncio.to_thread(lambda: self.w3.eth.block_number)
            return f"ok (Ethereum block #{block})"
        return "disconnected"

    def _require_connection(self):
        if not self.w3:
            raise ChainError("Not connected to Ethereum", ErrorCode.NETWORK_ERROR)

    @staticmethod
    def _checksum(address: str) -> str:
        from web3 import Web3
        return Web3.to_checksum_address(address)

    @staticmethod
    def _tx_hash(value) -> str:
        from web3 import Web3
        return Web3.to_hex(value)

    def _send(self, fn) -> dict:
        """Sign, send and wait for a contract call. Runs in a worker thread."""
        tx = fn.build_transaction({
            "from": self.account.address,
            "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
            "gas": settings.GAS_LIMIT,
            "chainId": self.w3.eth.chain_id,
        })
        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=settings.TX_TIMEOUT)
        if receipt.status != 1:
            raise ChainError(f"Transaction {self._tx_hash(tx_hash)} reverted", ErrorCode.TRANSACTION_FAILED)
        self._wait_confirmations(receipt.blockNumber)
        return receipt

    def _wait_confirmations(self, block_number: int):
        deadline = time.monotonic() + settings.TX_TIMEOUT
        while self.w3.eth.block_number - block_number + 1 < settings.CONFIRMATIONS_REQUIRED:
            if time.monotonic() > deadline:
                raise ChainError("Timed out waiting for confirmations", ErrorCode.TIMEOUT)
            time.sleep(1)

    async def _write(self, action: str, fn) -> dict:
        self._require_connection()
        async with self._write_lock:
            try:
                return await asyncio.to_thread(self._send, fn)
            except ChainError:
                raise
            except Exception as e:
                logger.error(f"{action} failed: {e}")
                code = ErrorCode.INSUFFICIENT_FUNDS if "insufficient funds" in str(e).lower() \
                    else ErrorCode.CONTRACT_ERROR
                raise ChainError(f"Failed to {action}: {e}", code) from e

    async def mint_deed_nft(self, owner_address: str, ipfs_hash: str) -> dict:
        from web3.logs import DISCARD

        logger.info(f"Minting NFT for owner: {owner_address}, IPFS: {ipfs_hash}")
        fn = self.deed_nft.functions.mintDeed(self._checksum(owner_address), token_uri_for(ipfs_hash))
        receipt = await self._write("mint NFT", fn)

        events = self.deed_nft.events.Transfer().process_receipt(receipt, errors=DISCARD)
        minted = [e for e in events if e["args"]["from"] == ZERO_ADDRESS]
        if not minted:
            raise ChainError("Mint receipt has no Transfer event", ErrorCode.CONTRACT_ERROR)
        token_id = minted[0]["args"]["tokenId"]
        logger.info(f"NFT minted successfully with token ID: {token_id}")
        return {"tokenId": token_id, "txHash": self._tx_hash(receipt.transactionHash)}

    async def verify_property(self, token_id) -> dict:
        receipt = await self._write("verify property", self.land_registry.functions.verifyProperty(int(token_id)))
        logger.info(f"Property {token_id} verified on-chain")
        return {"txHash": self._tx_hash(receipt.transactionHash)}

    async def transfer_ownership(self, token_id, from_address: str, to_address: str) -> dict:
        fn = self.deed_nft.functions.transferFrom(
            self._checksum(from_address), self._checksum(to_address), int(token_id)
        )
        receipt = await self._write("transfer ownership", fn)
        logger.info(f"Ownership transferred for token {token_id} from {from_address} to {to_address}")
        return {"txHash": self._tx_hash(receipt.transactionHash)}

    async def register_property(self, ipfs_hash: str, location: str) -> dict:
        self._require_connection()
        fn = self.land_registry.functions.registerProperty(ipfs_hash, location)
        # Dry-run first: the return value is the new registry id
        registry_id = await asyncio.to_thread(fn.call, {"from": self.account.address})
        receipt = await self._write("register property", fn)
        return {"registryId": registry_id, "txHash": self._tx_hash(receipt.transactionHash)}

    async def get_property(self, token_id) -> dict:
        self._require_connection()
        try:
            record = await asyncio.to_thread(self.land_registry.functions.getProperty(int(token_id)).call)
        except Exception as e:
            logger.error(f"Failed to fetch property from blockchain: {e}")
            raise ChainError(f"Failed to fetch property: {e}") from e
        prop_id, owner, ipfs_hash, verified = record
        return {"id": str(prop_id), "owner": owner, "ipfsHash": ipfs_hash, "verified": verified}


# ── Factory: picks the right backend from .env ───────────────────────────────
def _create_blockchain():
    backend = settings.BLOCKCHAIN_BACKEND.lower()
    if backend == "ethereum":
        logger.info("Using Ethereum blockchain backend")
        return EthereumChain()
    else:
        logger.info("Using Simulated blockchain backend (development mode)")
        return SimulatedChain()


# Singleton, import this everywhere:  from core.blockchain import blockchain
blockchain = _create_blockchain()
