import pytest
from pymongo.errors import PyMongoError

import accounts
import config
from errors import DuplicatePhone, InvalidCredentials, PersistenceError, ValidationError
from tests.conftest import auth_header


def test_resident_registration_links_house(db, resident):
    house = db["house"].find_one()
    user = db["user"].find_one({"role": "resident"})

    assert user["house"] == str(house["_id"])
    assert house["created_at"] <= user["created_at"]
    assert resident["user"]["house"]["id"] == str(house["_id"])
    assert resident["profile"]["beaconScore"] == 80
    assert resident["profile"]["isAvailable"] is True
    assert resident["profile"]["doorNumber"] == "12A"
    assert resident["profile"]["coordinates"] == config.DEFAULT_COORDINATES


def test_resident_house_uses_given_coordinates(make_user):
    result = make_user("resident", coordinates=[80.27, 13.08], wardNumber="WARD-7")
    house = result["user"]["house"]
    assert house["location"]["coordinates"] == [80.27, 13.08]
    assert house["wardNumber"] == "WARD-7"


def test_collector_and_authority_have_no_house(db, collector, authority):
    assert collector["user"]["house"] is None
    assert collector["profile"] == {
        "id": collector["user"]["id"],
        "employeeId": "GC-1",
        "areaAssigned": "Ward 4",
        "collectionProgress": 0,
    }
    assert authority["profile"]["authorityName"] == "Ward Office"
    assert db["house"].count_documents({}) == 0


def test_duplicate_phone_leaves_store_unchanged(db, resident):
    before = db["user"].count_documents({})
    with pytest.raises(DuplicatePhone):
        accounts.register(db, {"phone": resident["user"]["phone"], "password": "x", "role": "collector"})
    assert db["user"].count_documents({}) == before
    assert db["collector"].count_documents({}) == 0


def test_missing_fields_and_unknown_role(db):
    with pytest.raises(ValidationError):
        accounts.register(db, {"phone": "9000000001", "role": "resident"})
    with pytest.raises(ValidationError):
        accounts.register(db, {"phone": "9000000001", "password": "pw", "role": "mayor"})
    assert db["user"].count_documents({}) == 0


def test_password_is_stored_hashed(db, resident):
    user = db["user"].find_one()
    assert "password" not in user
    assert user["password_hash"] != "secret"
    assert "password_hash" not in resident["user"]


def test_failed_profile_write_rolls_back(db, monkeypatch):
    real_create = accounts.create_document

    def failing_create(database, collection_name, data):
        if collection_name == "resident":
            raise PyMongoError("disk full")
        return real_create(database, collection_name, data)

    monkeypatch.setattr(accounts, "create_document", failing_create)
    with pytest.raises(PersistenceError):
        accounts.register(db, {"phone": "9000000002", "password": "pw", "role": "resident"})

    assert db["house"].count_documents({}) == 0
    assert db["user"].count_documents({}) == 0


def test_login_populates_house(db, resident):
    result = accounts.login(db, resident["user"]["phone"], "secret")
    assert result["user"]["id"] == resident["user"]["id"]
    assert result["user"]["house"]["houseNumber"] == "12A"
    assert result["profile"]["address"] == "MG Road"


def test_login_failures_are_uniform(db, resident):
    with pytest.raises(InvalidCredentials) as wrong_password:
        accounts.login(db, resident["user"]["phone"], "nope")
    with pytest.raises(InvalidCredentials) as unknown_phone:
        accounts.login(db, "9111111111", "secret")
    assert wrong_password.value.message == unknown_phone.value.message


def test_register_and_login_endpoints(client, db):
    body = {
        "user": {"name": "Asha", "phone": "9000000010", "password": "pw123", "role": "resident"},
        "profile": {"doorNumber": "4B", "address": "Lake View"},
    }
    res = client.post("/api/auth/register", json=body)
    assert res.status_code == 201
    data = res.json()
    assert data["token"]
    assert data["user"]["house"]["houseNumber"] == "4B"

    res = client.post("/api/auth/register", json=body)
    assert res.status_code == 400
    assert res.json()["detail"] == "Phone number already registered"
    assert db["user"].count_documents({}) == 1

    res = client.post("/api/auth/login", json={"phone": "9000000010", "password": "pw123"})
    assert res.status_code == 200
    token = res.json()["token"]

    res = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    assert res.json()["user"]["name"] == "Asha"


def test_login_endpoint_rejects_with_same_body(client, resident):
    wrong = client.post("/api/auth/login", json={"phone": resident["user"]["phone"], "password": "bad"})
    missing = client.post("/api/auth/login", json={"phone": "9222222222", "password": "bad"})
    assert wrong.status_code == missing.status_code == 401
    assert wrong.json() == missing.json()


def test_register_endpoint_missing_fields(client):
    res = client.post("/api/auth/register", json={"user": {"phone": "9000000011", "role": "resident"}})
    assert res.status_code == 400


@pytest.mark.parametrize("coordinates", [[200.0, 28.6], [77.2, -91.0], [77.2]])
def test_register_endpoint_checks_coordinates(client, db, coordinates):
    body = {
        "user": {"phone": "9000000012", "password": "pw", "role": "resident"},
        "profile": {"coordinates": coordinates},
    }
    assert client.post("/api/auth/register", json=body).status_code == 400
    assert db["user"].count_documents({}) == 0
    assert db["house"].count_documents({}) == 0


def test_me_requires_token(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_availability_blocked_by_low_beacon(db, resident):
    user_id = resident["user"]["id"]
    assert accounts.set_availability(db, user_id, False)["isAvailable"] is False

    db["resident"].update_one({"userId": user_id}, {"$set": {"beaconScore": 40}})
    with pytest.raises(ValidationError):
        accounts.set_availability(db, user_id, True)
    assert db["resident"].find_one({"userId": user_id})["isAvailable"] is False


def test_availability_endpoint(client, resident):
    user_id = resident["user"]["id"]
    headers = auth_header(resident)
    res = client.post(f"/api/residents/{user_id}/status", json={"isAvailable": False}, headers=headers)
    assert res.status_code == 200
    assert res.json()["success"] is True
    assert res.json()["isAvailable"] is False

    res = client.post(f"/api/residents/{user_id}/status", json={}, headers=headers)
    assert res.status_code == 400


def test_availability_only_for_own_account(client, db, resident, make_user, collector):
    other = make_user("resident")
    url = f"/api/residents/{other['user']['id']}/status"
    assert client.post(url, json={"isAvailable": False}).status_code == 401
    assert client.post(url, json={"isAvailable": False}, headers=auth_header(resident)).status_code == 403
    assert client.post(url, json={"isAvailable": False}, headers=auth_header(collector)).status_code == 403
    assert db["resident"].find_one({"userId": other["user"]["id"]})["isAvailable"] is True


def test_collection_progress_bounds(db, client, collector, make_user):
    user_id = collector["user"]["id"]
    with pytest.raises(ValidationError):
        accounts.update_collection_progress(db, user_id, 150)

    url = f"/api/collectors/{user_id}/progress"
    res = client.patch(url, json={"collectionProgress": 60}, headers=auth_header(collector))
    assert res.status_code == 200
    assert res.json()["profile"]["collectionProgress"] == 60

    assert client.patch(url, json={"collectionProgress": 80}).status_code == 401
    other = make_user("collector")
    assert client.patch(url, json={"collectionProgress": 80}, headers=auth_header(other)).status_code == 403
    assert db["collector"].find_one({"userId": user_id})["collectionProgress"] == 60


def test_profile_lookup_by_token(client, collector):
    res = client.get("/api/auth/me", headers=auth_header(collector))
    assert res.json()["profile"]["employeeId"] == "GC-1"
