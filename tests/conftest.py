import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
import database
from main import app
from security import create_token


@pytest.fixture
def db():
    mock_db = mongomock.MongoClient()["binbeacon_test"]
    database.ensure_indexes(mock_db)
    return mock_db


@pytest.fixture
def client(db):
    app.dependency_overrides[database.get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    phones = itertools.count(1)

    def _make(role="resident", password="secret", **profile):
        phone = f"98{next(phones):08d}"
        user = {"name": f"{role.title()} {phone[-2:]}", "phone": phone, "password": password, "role": role}
        return accounts.register(db, user, profile)

    return _make


@pytest.fixture
def resident(make_user):
    return make_user("resident", doorNumber="12A", address="MG Road")


@pytest.fixture
def collector(make_user):
    return make_user("collector", employeeId="GC-1", areaAssigned="Ward 4")


@pytest.fixture
def authority(make_user):
    return make_user("authority", authorityName="Ward Office", employeeId="AUTH-1")


def auth_header(account):
    token = create_token(account["user"]["id"], account["user"]["role"])
    return {"Authorization": f"Bearer {token}"}
