import copy

import pytest

VALID_PROPERTY = {
    "propertyType": "Cabin",
    "location": "Lake Tahoe",
    "details": {
        "name": "Pine Retreat",
        "country": "USA",
        "address": "12 Lakeshore Dr",
        "city": "Tahoe City",
        "state": "CA",
        "zipCode": "96145",
    },
    "bedrooms": 3,
}


def test_add_property(client, db):
    res = client.post("/add-property", json=VALID_PROPERTY)

    assert res.status_code == 201
    body = res.json()
    assert body["insertedId"] == str(db.propertyData.find_one({})["_id"])
    assert body["property"]["details"]["city"] == "Tahoe City"
    assert db.propertyData.find_one({})["bedrooms"] == 3


def test_list_properties(client):
    client.post("/add-property", json=VALID_PROPERTY)

    res = client.get("/add-property")

    assert res.status_code == 200
    assert [p["location"] for p in res.json()] == ["Lake Tahoe"]


@pytest.mark.parametrize("field", ["name", "country", "address", "city", "state", "zipCode"])
def test_missing_detail_is_rejected(client, db, field):
    body = copy.deepcopy(VALID_PROPERTY)
    del body["details"][field]

    assert client.post("/add-property", json=body).status_code == 400
    assert db.propertyData.count_documents({}) == 0


@pytest.mark.parametrize("field", ["name", "zipCode"])
def test_blank_detail_is_rejected(client, db, field):
    body = copy.deepcopy(VALID_PROPERTY)
    body["details"][field] = "  "

    assert client.post("/add-property", json=body).status_code == 400
    assert db.propertyData.count_documents({}) == 0


@pytest.mark.parametrize("field", ["propertyType", "location", "details"])
def test_missing_top_level_field_is_rejected(client, db, field):
    body = copy.deepcopy(VALID_PROPERTY)
    del body[field]

    assert client.post("/add-property", json=body).status_code == 400
    assert db.propertyData.count_documents({}) == 0


@pytest.mark.parametrize("extra", [{"_id": "mine"}, {"$where": "1"}, {"a.b": 1}])
def test_reserved_field_names_are_rejected(client, db, extra):
    body = {**copy.deepcopy(VALID_PROPERTY), **extra}

    res = client.post("/add-property", json=body)

    assert res.status_code == 400
    assert db.propertyData.count_documents({}) == 0


def test_details_are_stored_as_sent(client, db):
    body = copy.deepcopy(VALID_PROPERTY)
    body["details"]["name"] = " Pine Retreat "

    assert client.post("/add-property", json=body).status_code == 201
    assert db.propertyData.find_one({})["details"]["name"] == " Pine Retreat "
