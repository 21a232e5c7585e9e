from core.constants import UserRole
from core.ipfs import ipfs


def test_register_property_creates_pending_record_with_cid(client, make_user, register_property):
    owner = make_user()
    prop = register_property(owner)
    assert prop["status"] == "PENDING"
    assert prop["title"] == "Plot 14, Riverside"
    assert prop["ipfsHash"].startswith("bafy")
    assert set(prop) == {"id", "title", "location", "ipfsHash", "status", "createdAt"}


def test_register_pins_metadata(client, make_user, register_property):
    owner = make_user()
    prop = register_property(owner)
    metadata = client.portal.call(ipfs.retrieve_metadata, prop["ipfsHash"])
    assert metadata["documentType"] == "land_deed"
    assert metadata["owner"] == owner.address
    assert metadata["documents"][0]["name"] == "deed.pdf"


def test_register_queues_ipfs_upload_job(client, make_user, register_property, wait_for_jobs):
    owner = make_user()
    admin = make_user(UserRole.ADMIN)
    prop = register_property(owner)
    wait_for_jobs()

    r = client.get("/api/admin/queues/ipfs/jobs/1", headers=admin.headers)
    job = r.json()["data"]["job"]
    assert job["name"] == "upload-to-ipfs"
    assert job["state"] == "completed"
    assert job["data"]["propertyId"] == prop["id"]

    detail = client.get(f"/api/properties/{prop['id']}", headers=owner.headers).json()["data"]["property"]
    assert detail["ipfsHash"] == job["returnValue"]["ipfsHash"]


def test_register_requires_auth(client, property_body):
    r = client.post("/api/properties/register", json=property_body())
    assert r.status_code == 401


def test_register_validation(client, make_user, property_body):
    owner = make_user()
    bad_bodies = [
        property_body(title=""),
        property_body(size=0),
        property_body(title="x" * 201),
        property_body(documents=[]),
        property_body(documents=[{"name": "a.exe", "type": "application/x-msdownload", "size": 10}]),
        property_body(documents=[{"name": "big.pdf", "type": "application/pdf", "size": 11 * 1024 * 1024}]),
    ]
    for body in bad_bodies:
        r = client.post("/api/properties/register", json=body, headers=owner.headers)
        assert r.status_code == 400, body
        assert r.json()["success"] is False

    body = property_body()
    del body["coordinates"]
    r = client.post("/api/properties/register", json=body, headers=owner.headers)
    assert r.status_code == 400
    assert r.json()["code"] == "MISSING_REQUIRED_FIELD"


def test_citizen_listing_shows_own_and_verified_only(client, make_user, register_property, verified_property):
    alice, bob = make_user(), make_user()
    own_pending = register_property(alice, title="Alice pending")
    register_property(bob, title="Bob pending")
    bob_verified = verified_property(bob, title="Bob verified")

    r = client.get("/api/properties", headers=alice.headers)
    ids = {p["id"] for p in r.json()["data"]["properties"]}
    assert ids == {own_pending["id"], bob_verified["id"]}


def test_verifier_listing_sees_everything_and_filters(client, make_user, register_property, verified_property):
    owner = make_user()
    verifier = make_user(UserRole.VERIFIER)
    register_property(owner, title="Lake view plot")
    verified_property(owner, title="Hill top farm", location="Nashik")

    r = client.get("/api/properties", headers=verifier.headers)
    data = r.json()["data"]
    assert data["pagination"]["total"] == 2
    newest = data["properties"][0]
    assert newest["title"] == "Hill top farm"
    assert newest["owner"]["walletAddress"] == owner.address
    assert newest["verifications"][0]["approved"] is True

    r = client.get("/api/properties", params={"status": "PENDING"}, headers=verifier.headers)
    assert [p["title"] for p in r.json()["data"]["properties"]] == ["Lake view plot"]

    r = client.get("/api/properties", params={"search": "NASHIK"}, headers=verifier.headers)
    assert [p["title"] for p in r.json()["data"]["properties"]] == ["Hill top farm"]


def test_listing_rejects_unknown_status(client, make_user):
    user = make_user()
    r = client.get("/api/properties", params={"status": "SOLD"}, headers=user.headers)
    assert r.status_code == 400


def test_listing_pagination(client, make_user, register_property):
    owner = make_user()
    for i in range(3):
        register_property(owner, title=f"Plot {i}")
    r = client.get("/api/properties", params={"page": 2, "limit": 2}, headers=owner.headers)
    data = r.json()["data"]
    assert len(data["properties"]) == 1
    assert data["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}


def test_search_requires_a_criterion(client, make_user):
    user = make_user()
    r = client.get("/api/properties/search", headers=user.headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Either coordinates or location is required"


def test_search_returns_verified_matches_only(client, make_user, register_property, verified_property):
    owner = make_user()
    register_property(owner, location="Baner, Pune")
    verified = verified_property(owner, location="Aundh, Pune", coordinates="18.55,73.80")

    r = client.get("/api/properties/search", params={"location": "pune"}, headers=owner.headers)
    assert [p["id"] for p in r.json()["data"]["properties"]] == [verified["id"]]

    r = client.get("/api/properties/search", params={"coordinates": "18.55"}, headers=owner.headers)
    assert [p["id"] for p in r.json()["data"]["properties"]] == [verified["id"]]


def test_my_properties(client, make_user, register_property):
    owner, other = make_user(), make_user()
    mine = register_property(owner)
    register_property(other)
    r = client.get("/api/properties/user/my-properties", headers=owner.headers)
    props = r.json()["data"]["properties"]
    assert [p["id"] for p in props] == [mine["id"]]
    assert props[0]["verifications"] == []
    assert props[0]["transfers"] == []


def test_property_detail_visibility(client, make_user, register_property):
    owner, stranger = make_user(), make_user()
    verifier = make_user(UserRole.VERIFIER)
    prop = register_property(owner)

    r = client.get(f"/api/properties/{prop['id']}", headers=owner.headers)
    assert r.status_code == 200
    assert r.json()["data"]["property"]["owner"]["walletAddress"] == owner.address

    assert client.get(f"/api/properties/{prop['id']}", headers=stranger.headers).status_code == 403
    assert client.get(f"/api/properties/{prop['id']}", headers=verifier.headers).status_code == 200


def test_property_detail_not_found(client, make_user):
    user = make_user()
    r = client.get("/api/properties/missing", headers=user.headers)
    assert r.status_code == 404
    assert r.json() == {"success": False, "message": "Property not found", "code": "PROPERTY_NOT_FOUND"}


def test_owner_can_edit_pending_property(client, make_user, register_property):
    owner = make_user()
    prop = register_property(owner)
    r = client.put(f"/api/properties/{prop['id']}", json={"title": "Renamed plot"}, headers=owner.headers)
    assert r.status_code == 200
    updated = r.json()["data"]["property"]
    assert updated["title"] == "Renamed plot"
    assert updated["description"] == "Residential plot with road access"


def test_non_owner_cannot_edit(client, make_user, register_property):
    owner, other = make_user(), make_user()
    prop = register_property(owner)
    r = client.put(f"/api/properties/{prop['id']}", json={"title": "Mine now"}, headers=other.headers)
    assert r.status_code == 403


def test_cannot_edit_after_verification(client, make_user, verified_property):
    owner = make_user()
    prop = verified_property(owner)
    r = client.put(f"/api/properties/{prop['id']}", json={"title": "Too late"}, headers=owner.headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Cannot update property after verification process has started"


def test_onchain_record(client, make_user, register_property, verified_property):
    owner = make_user()
    pending = register_property(owner)
    r = client.get(f"/api/properties/{pending['id']}/chain", headers=owner.headers)
    assert r.status_code == 400

    prop = verified_property(owner)
    r = client.get(f"/api/properties/{prop['id']}/chain", headers=owner.headers)
    assert r.status_code == 200
    record = r.json()["data"]["chain"]
    assert record["id"] == prop["tokenId"]
    assert record["owner"] == owner.address
    assert record["verified"] is True
