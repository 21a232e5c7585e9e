import os
import tempfile
from pathlib import Path
from types import SimpleNamespace

# Settings are read once at import time, so the test environment goes first.
_TMP = Path(tempfile.mkdtemp(prefix="deedchain-tests-"))
os.environ.update({
    "DATABASE_URL": f"sqlite+aiosqlite:///{_TMP / 'test.db'}",
    "LOG_FILE": str(_TMP / "test.log"),
    "ENVIRONMENT": "test",
    "JWT_SECRET": "test-secret",
    "BLOCKCHAIN_BACKEND": "simulation",
    "IPFS_BACKEND": "simulation",
    "QUEUE_BACKEND": "memory",
    "JOB_ATTEMPTS": "3",
    "JOB_BACKOFF_MS": "1",
    "IPFS_JOB_BACKOFF_MS": "1",
    "RATE_LIMIT_MAX": "100000",
    "SMTP_HOST": "",
    "ADMIN_EMAIL": "",
})

import pytest
from eth_account import Account
from fastapi.testclient import TestClient
from sqlalchemy import update

from core.blockchain import blockchain
from core.constants import UserRole
from core.ipfs import ipfs
from db.models import User
from db.session import reset_db, session_scope
from main import app
from modules.jobs import queue_service


async def _set_role(wallet_address: str, role: UserRole):
    async with session_scope() as db:
        await db.execute(update(User).where(User.wallet_address == wallet_address.lower()).values(role=role))


@pytest.fixture
def client():
    with TestClient(app) as c:
        c.portal.call(queue_service.clear)
        c.portal.call(reset_db)
        blockchain.reset()
        ipfs.reset()
        yield c
        c.portal.call(queue_service.clear)


@pytest.fixture
def wait_for_jobs(client):
    def _wait(timeout: float = 10):
        client.portal.call(queue_service.wait_until_idle, timeout)
    return _wait


@pytest.fixture
def make_user(client):
    """Log a fresh wallet in and return its address, token and auth headers."""
    def _make(role: UserRole = UserRole.CITIZEN, email: str = None, name: str = None):
        account = Account.create()
        r = client.post("/api/users/auth/wallet", json={"walletAddress": account.address})
        assert r.status_code == 200, r.text
        data = r.json()["data"]
        headers = {"Authorization": f"Bearer {data['token']}"}
        if role != UserRole.CITIZEN:
            client.portal.call(_set_role, account.address, role)
        if email or name:
            body = {k: v for k, v in (("email", email), ("name", name)) if v}
            assert client.put("/api/users/profile", json=body, headers=headers).status_code == 200
        return SimpleNamespace(
            account=account,
            address=account.address.lower(),
            id=data["user"]["id"],
            token=data["token"],
            headers=headers,
        )
    return _make


def property_payload(**overrides) -> dict:
    body = {
        "title": "Plot 14, Riverside",
        "description": "Residential plot with road access",
        "location": "Riverside, Pune",
        "coordinates": "18.5204,73.8567",
        "size": 1200.5,
        "documents": [{"name": "deed.pdf", "type": "application/pdf", "size": 2048}],
    }
    body.update(overrides)
    return body


@pytest.fixture
def property_body():
    return property_payload


@pytest.fixture
def register_property(client):
    def _register(owner, **overrides) -> dict:
        r = client.post("/api/properties/register", json=property_payload(**overrides), headers=owner.headers)
        assert r.status_code == 201, r.text
        return r.json()["data"]["property"]
    return _register


@pytest.fixture
def verified_property(client, register_property, make_user, wait_for_jobs):
    """Register a property for `owner`, approve it, and let the mint job finish."""
    def _make(owner, **overrides) -> dict:
        verifier = make_user(UserRole.VERIFIER)
        prop = register_property(owner, **overrides)
        r = client.post(f"/api/verifications/{prop['id']}/verify", json={"approved": True}, headers=verifier.headers)
        assert r.status_code == 200, r.text
        wait_for_jobs()
        r = client.get(f"/api/properties/{prop['id']}", headers=owner.headers)
        return r.json()["data"]["property"]
    return _make
