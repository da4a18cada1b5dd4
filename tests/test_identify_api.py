"""API tests for the /identify endpoint."""

import pytest
from fastapi.testclient import TestClient

import main
from exceptions import InternalConsistencyViolation, StoreUnavailable, TransactionConflict

pytestmark = pytest.mark.api


@pytest.fixture
def client(database_path):
    with TestClient(main.app) as test_client:
        yield test_client


def test_root_reports_service_up(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"message": "Bitespeed API is up"}


def test_identify_walkthrough(client):
    response = client.post("/identify", json={"email": "a@x.com"})
    assert response.status_code == 200
    assert response.json() == {
        "contact": {
            "primaryContactId": 1,
            "emails": ["a@x.com"],
            "phoneNumbers": [],
            "secondaryContactIds": [],
        }
    }

    linked = {
        "contact": {
            "primaryContactId": 1,
            "emails": ["a@x.com"],
            "phoneNumbers": ["555"],
            "secondaryContactIds": [2],
        }
    }
    response = client.post("/identify", json={"email": "a@x.com", "phoneNumber": "555"})
    assert response.status_code == 200
    assert response.json() == linked

    response = client.post("/identify", json={"phoneNumber": "555"})
    assert response.status_code == 200
    assert response.json() == linked


def test_merge_through_the_api(client, contacts):
    client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "919191"})
    client.post("/identify", json={"email": "biffsucks@hillvalley.edu", "phoneNumber": "717171"})

    response = client.post(
        "/identify",
        json={"email": "george@hillvalley.edu", "phoneNumber": "717171"},
    )

    assert response.status_code == 200
    assert response.json()["contact"] == {
        "primaryContactId": 1,
        "emails": ["george@hillvalley.edu", "biffsucks@hillvalley.edu"],
        "phoneNumbers": ["919191", "717171"],
        "secondaryContactIds": [2],
    }
    assert len(contacts()) == 2


def test_numeric_phone_number_is_accepted(client, contacts):
    response = client.post("/identify", json={"email": "a@x.com", "phoneNumber": 123456})

    assert response.status_code == 200
    assert response.json()["contact"]["phoneNumbers"] == ["123456"]
    assert contacts()[0].phoneNumber == "123456"


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"email": None, "phoneNumber": None},
        {"email": "", "phoneNumber": ""},
    ],
)
def test_missing_identifiers_return_empty_400(client, contacts, body):
    response = client.post("/identify", json=body)

    assert response.status_code == 400
    assert response.content == b""
    assert contacts() == []


def test_malformed_body_returns_empty_400(client):
    response = client.post("/identify", json={"email": ["a@x.com"]})

    assert response.status_code == 400
    assert response.content == b""


@pytest.mark.parametrize(
    "error",
    [
        InternalConsistencyViolation("cluster has two primaries", {"primary_id": 1}),
        StoreUnavailable("unable to open database file"),
        TransactionConflict("database is locked"),
    ],
)
def test_store_failures_return_empty_500(client, monkeypatch, error):
    def failing_identify(email, phone_number):
        raise error

    monkeypatch.setattr(main, "identify", failing_identify)

    response = client.post("/identify", json={"email": "a@x.com"})

    assert response.status_code == 500
    assert response.content == b""
