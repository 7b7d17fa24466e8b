CUSTOMER = {
    "code": "customer",
    "name": "Customer",
    "description": "People we sell to",
    "schemaDefinition": {
        "type": "object",
        "properties": {
            "customerCode": {"type": "string"},
            "email": {"type": "string", "format": "email"},
        },
        "required": ["customerCode"],
    },
    "derivedRecordConfig": {"versioning": {"enabled": True}},
}


def _create(client, payload=None):
    response = client.post("/api/entities/", json=payload or CUSTOMER)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_create_entity(client):
    data = _create(client)

    assert data["code"] == "CUSTOMER"
    assert data["schemaDefinition"]["required"] == ["customerCode"]
    assert data["derivedRecordConfig"]["versioning"] == {"enabled": True}
    assert data["derivedRecordConfig"]["hierarchy"]["parentLinkField"] == "parentId"
    assert data["isActive"] is True
    assert data["createdBy"] is not None


def test_create_duplicate_code_conflicts(client):
    _create(client)

    response = client.post("/api/entities/", json={**CUSTOMER, "code": "CUSTOMER"})

    assert response.status_code == 409
    body = response.json()
    assert body["status"] == "fail"
    assert body["kind"] == "DuplicateCode"


def test_create_invalid_schema_is_bad_request(client):
    payload = {**CUSTOMER, "schemaDefinition": {"type": "object", "properties": {}, "required": ["ghost"]}}

    response = client.post("/api/entities/", json=payload)

    assert response.status_code == 400
    assert response.json()["kind"] == "InvalidSchema"


def test_create_missing_name_is_unprocessable(client):
    response = client.post("/api/entities/", json={"code": "X"})

    assert response.status_code == 422


def test_get_by_id_code_and_schema(client):
    created = _create(client)

    assert client.get(f"/api/entities/{created['id']}").json()["data"]["code"] == "CUSTOMER"
    assert client.get("/api/entities/code/customer").json()["data"]["id"] == created["id"]

    schema = client.get(f"/api/entities/{created['id']}/schema").json()["data"]
    assert set(schema) == {"code", "name", "schemaDefinition", "derivedRecordConfig"}
    assert "email" in schema["schemaDefinition"]["properties"]


def test_get_unknown_entity_is_404(client):
    response = client.get("/api/entities/999")

    assert response.status_code == 404
    assert response.json()["kind"] == "NotFound"


def test_list_envelope_omits_schema_properties(client):
    _create(client)
    _create(client, {**CUSTOMER, "code": "SUPPLIER", "name": "Supplier"})

    body = client.get("/api/entities/", params={"limit": 1}).json()

    assert body["status"] == "success"
    assert body["count"] == 1
    assert body["total"] == 2
    assert body["totalPages"] == 2
    assert body["currentPage"] == 1
    assert body["data"][0]["code"] == "SUPPLIER"
    assert "properties" not in body["data"][0]["schemaDefinition"]


def test_update_keeps_code_and_blocks_disabling_versioning(client):
    created = _create(client)

    response = client.put(f"/api/entities/{created['id']}", json={"code": "RENAMED", "name": "Client"})
    assert response.status_code == 200
    assert response.json()["data"]["code"] == "CUSTOMER"
    assert response.json()["data"]["name"] == "Client"

    response = client.put(
        f"/api/entities/{created['id']}",
        json={"derivedRecordConfig": {"versioning": {"enabled": False}}},
    )
    assert response.status_code == 400
    assert response.json()["kind"] == "MonotonicConfigViolation"


def test_toggle_activation(client):
    created = _create(client)

    response = client.patch(f"/api/entities/{created['id']}/toggle-activation")

    assert response.status_code == 200
    assert response.json()["data"] == {"id": created["id"], "code": "CUSTOMER", "entityActive": False}
    listed = client.get("/api/entities/", params={"active": "false"}).json()
    assert [d["code"] for d in listed["data"]] == ["CUSTOMER"]


def test_delete_refused_while_records_exist(client):
    created = _create(client)
    record = client.post("/api/entity-records/CUSTOMER/", json={"data": {"customerCode": "ACME"}}).json()["data"]

    response = client.delete(f"/api/entities/{created['id']}")
    assert response.status_code == 409
    assert response.json()["kind"] == "DefinitionInUse"

    assert client.delete(f"/api/entity-records/CUSTOMER/{record['id']}").status_code == 200
    assert client.delete(f"/api/entities/{created['id']}").status_code == 200
    assert client.get(f"/api/entities/{created['id']}").status_code == 404


def test_health(client):
    body = client.get("/api/system/health").json()

    assert body["status"] == "ok"
    assert body["database"]["ok"] is True
