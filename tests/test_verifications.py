import asyncio

from core.blockchain import blockchain
from core.constants import UserRole
from db.models import User
from db.session import AsyncSessionLocal
from modules import verification as verification_module
from modules.jobs import queue_service


def test_pending_queue_is_oldest_first_and_role_guarded(client, make_user, register_property):
    owner = make_user(email="owner@example.com")
    verifier = make_user(UserRole.VERIFIER)
    first = register_property(owner, title="First")
    register_property(owner, title="Second")

    assert client.get("/api/verifications/pending", headers=owner.headers).status_code == 403

    r = client.get("/api/verifications/pending", headers=verifier.headers)
    data = r.json()["data"]
    assert [p["title"] for p in data["verifications"]] == ["First", "Second"]
    assert data["verifications"][0]["id"] == first["id"]
    assert data["verifications"][0]["owner"]["email"] == "owner@example.com"
    assert data["pagination"]["total"] == 2


def test_approve_mints_deed_and_marks_verified_on_chain(client, make_user, register_property, wait_for_jobs):
    owner = make_user()
    verifier = make_user(UserRole.VERIFIER)
    prop = register_property(owner)

    r = client.post(
        f"/api/verifications/{prop['id']}/verify",
        json={"approved": True, "comments": "Documents match the land record"},
        headers=verifier.headers,
    )
    assert r.status_code == 200
    verification = r.json()["data"]["verification"]
    assert verification["approved"] is True
    assert verification["verifierId"] == verifier.id

    wait_for_jobs()
    detail = client.get(f"/api/properties/{prop['id']}", headers=owner.headers).json()["data"]["property"]
    assert detail["status"] == "VERIFIED"
    assert detail["tokenId"] == "1"
    assert blockchain.tokens[1]["owner"] == owner.address
    assert 1 in blockchain.verified


def test_reject_sets_rejected_without_minting(client, make_user, register_property, wait_for_jobs):
    owner = make_user()
    verifier = make_user(UserRole.VERIFIER)
    prop = register_property(owner)

    r = client.post(f"/api/verifications/{prop['id']}/verify", json={"approved": False}, headers=verifier.headers)
    assert r.status_code == 200
    wait_for_jobs()

    detail = client.get(f"/api/properties/{prop['id']}", headers=owner.headers).json()["data"]["property"]
    assert detail["status"] == "REJECTED"
    assert detail["tokenId"] is None
    assert blockchain.tokens == {}


def test_verify_twice_is_rejected(client, make_user, register_property):
    owner = make_user()
    verifier = make_user(UserRole.VERIFIER)
    prop = register_property(owner)
    url = f"/api/verifications/{prop['id']}/verify"
    assert client.post(url, json={"approved": False}, headers=verifier.headers).status_code == 200

    r = client.post(url, json={"approved": True}, headers=verifier.headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Property is not pending verification"


def test_concurrent_decisions_record_one_verification(client, make_user, register_property):
    """An approve and a reject that both saw PENDING race on the conditional update."""
    owner = make_user()
    approver, rejecter = make_user(UserRole.VERIFIER), make_user(UserRole.VERIFIER)
    prop = register_property(owner)

    async def race():
        async def attempt(verifier, approved):
            async with AsyncSessionLocal() as db:
                user = await db.get(User, verifier.id)
                try:
                    return await verification_module.verify_property(db, user, prop["id"], approved)
                except Exception as e:
                    await db.rollback()
                    return e
        return await asyncio.gather(attempt(approver, True), attempt(rejecter, False))

    results = client.portal.call(race)
    assert len([r for r in results if isinstance(r, dict)]) == 1

    history = client.get(f"/api/verifications/property/{prop['id']}", headers=owner.headers).json()["data"]
    assert len(history["verifications"]) == 1
    detail = client.get(f"/api/properties/{prop['id']}", headers=owner.headers).json()["data"]["property"]
    assert detail["status"] == ("VERIFIED" if history["verifications"][0]["approved"] else "REJECTED")


def test_verification_job_does_not_mint_for_rejected_property(client, make_user, register_property, wait_for_jobs):
    owner = make_user()
    verifier = make_user(UserRole.VERIFIER)
    prop = register_property(owner)
    client.post(f"/api/verifications/{prop['id']}/verify", json={"approved": False}, headers=verifier.headers)

    job = client.portal.call(queue_service.add_verification_job, prop["id"], verifier.id, True)
    wait_for_jobs()

    finished = client.portal.call(queue_service.get_job, "verification", job.id)
    assert finished.state.value == "completed"
    assert finished.return_value["skipped"] is True
    assert blockchain.tokens == {}


def test_verify_missing_property(client, make_user):
    verifier = make_user(UserRole.VERIFIER)
    r = client.post("/api/verifications/nope/verify", json={"approved": True}, headers=verifier.headers)
    assert r.status_code == 404


def test_citizen_cannot_verify(client, make_user, register_property):
    owner = make_user()
    prop = register_property(owner)
    r = client.post(f"/api/verifications/{prop['id']}/verify", json={"approved": True}, headers=owner.headers)
    assert r.status_code == 403


def test_verify_body_validation(client, make_user, register_property):
    owner = make_user()
    verifier = make_user(UserRole.VERIFIER)
    prop = register_property(owner)
    url = f"/api/verifications/{prop['id']}/verify"
    assert client.post(url, json={}, headers=verifier.headers).status_code == 400
    assert client.post(url, json={"approved": True, "comments": "x" * 501}, headers=verifier.headers).status_code == 400


def test_history_newest_first(client, make_user, register_property):
    owner = make_user()
    verifier = make_user(UserRole.VERIFIER)
    prop = register_property(owner)
    client.post(f"/api/verifications/{prop['id']}/verify", json={"approved": False}, headers=verifier.headers)

    r = client.get(f"/api/verifications/property/{prop['id']}", headers=owner.headers)
    history = r.json()["data"]["verifications"]
    assert len(history) == 1
    assert history[0]["verifier"]["walletAddress"] == verifier.address
    assert history[0]["verifier"]["role"] == "VERIFIER"


def test_verifier_stats(client, make_user, register_property):
    owner = make_user()
    verifier = make_user(UserRole.VERIFIER)
    a, b, _ = register_property(owner), register_property(owner), register_property(owner)
    client.post(f"/api/verifications/{a['id']}/verify", json={"approved": True}, headers=verifier.headers)
    client.post(f"/api/verifications/{b['id']}/verify", json={"approved": False}, headers=verifier.headers)

    r = client.get("/api/verifications/stats", headers=verifier.headers)
    assert r.json()["data"] == {
        "totalVerifications": 2,
        "approvedCount": 1,
        "rejectedCount": 1,
        "pendingCount": 1,
        "approvalRate": 50.0,
    }


def test_verifier_stats_with_no_history(client, make_user):
    verifier = make_user(UserRole.VERIFIER)
    r = client.get("/api/verifications/stats", headers=verifier.headers)
    assert r.json()["data"]["approvalRate"] == 0


def test_admin_list_filters(client, make_user, register_property):
    owner = make_user()
    admin = make_user(UserRole.ADMIN)
    v1, v2 = make_user(UserRole.VERIFIER), make_user(UserRole.VERIFIER)
    a, b = register_property(owner), register_property(owner)
    client.post(f"/api/verifications/{a['id']}/verify", json={"approved": True}, headers=v1.headers)
    client.post(f"/api/verifications/{b['id']}/verify", json={"approved": False}, headers=v2.headers)

    assert client.get("/api/verifications", headers=v1.headers).status_code == 403

    r = client.get("/api/verifications", params={"approved": "false"}, headers=admin.headers)
    items = r.json()["data"]["verifications"]
    assert [v["propertyId"] for v in items] == [b["id"]]
    assert items[0]["property"]["status"] == "REJECTED"

    r = client.get("/api/verifications", params={"verifierId": v1.id}, headers=admin.headers)
    assert [v["propertyId"] for v in r.json()["data"]["verifications"]] == [a["id"]]
