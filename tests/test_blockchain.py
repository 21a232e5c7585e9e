import asyncio
from types import SimpleNamespace

import pytest

from core.blockchain import EthereumChain, SimulatedChain, token_uri_for, _create_blockchain
from core.errors import ChainError, ErrorCode

OWNER = "0x" + "a" * 40
BUYER = "0x" + "b" * 40


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def chain():
    return SimulatedChain()


def test_default_backend_is_simulated():
    assert isinstance(_create_blockchain(), SimulatedChain)


def test_token_uri():
    assert token_uri_for("bafyabc") == "ipfs://bafyabc"


def test_mint_assigns_sequential_token_ids(chain):
    first = run(chain.mint_deed_nft(OWNER, "bafy1"))
    second = run(chain.mint_deed_nft(OWNER.upper().replace("0X", "0x"), "bafy2"))
    assert (first["tokenId"], second["tokenId"]) == (1, 2)
    assert first["txHash"].startswith("0x") and len(first["txHash"]) == 66
    assert first["txHash"] != second["txHash"]
    assert chain.tokens[2]["owner"] == OWNER


def test_verify_and_read_back(chain):
    token = run(chain.mint_deed_nft(OWNER, "bafy1"))["tokenId"]
    assert run(chain.get_property(token))["verified"] is False
    run(chain.verify_property(str(token)))
    record = run(chain.get_property(token))
    assert record == {"id": "1", "owner": OWNER, "ipfsHash": "bafy1", "verified": True}


def test_unknown_token_raises_contract_error(chain):
    with pytest.raises(ChainError) as err:
        run(chain.verify_property(42))
    assert err.value.code == ErrorCode.CONTRACT_ERROR


def test_transfer_requires_current_owner(chain):
    token = run(chain.mint_deed_nft(OWNER, "bafy1"))["tokenId"]
    with pytest.raises(ChainError) as err:
        run(chain.transfer_ownership(token, BUYER, OWNER))
    assert err.value.code == ErrorCode.TRANSACTION_FAILED

    run(chain.transfer_ownership(token, OWNER, BUYER))
    assert run(chain.get_property(token))["owner"] == BUYER


def test_register_property_on_registry(chain):
    first = run(chain.register_property("bafy1", "Pune"))
    second = run(chain.register_property("bafy2", "Nashik"))
    assert (first["registryId"], second["registryId"]) == (1, 2)
    assert chain.registry[2]["location"] == "Nashik"


def test_reset_clears_state(chain):
    run(chain.mint_deed_nft(OWNER, "bafy1"))
    chain.reset()
    assert chain.tokens == {}
    assert chain.transactions == []
    assert run(chain.mint_deed_nft(OWNER, "bafy1"))["tokenId"] == 1


def test_ethereum_tx_hashes_are_0x_prefixed(monkeypatch):
    chain = EthereumChain()
    receipt_hash = bytes.fromhex("ab" * 32)

    async def fake_write(action, fn):
        return SimpleNamespace(transactionHash=receipt_hash)

    monkeypatch.setattr(chain, "_write", fake_write)
    chain.deed_nft = SimpleNamespace(functions=SimpleNamespace(transferFrom=lambda *args: args))

    result = run(chain.transfer_ownership(7, OWNER, BUYER))
    assert result == {"txHash": "0x" + "ab" * 32}
