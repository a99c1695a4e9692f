import pytest

from dependencies import get_signature_store


@pytest.fixture()
def api(client, store):
    client.app.dependency_overrides[get_signature_store] = lambda: store
    return client


def _user(api, email, role, headers=None):
    r = api.post("/users", json={"email": email, "role": role}, headers=headers or {})
    assert r.status_code == 201, r.text
    return r.json()


@pytest.fixture()
def admin(api):
    return {"X-User-Id": _user(api, "admin@example.com", "ADMIN")["id"]}


@pytest.fixture()
def reader(api, admin):
    return {"X-User-Id": _user(api, "reader@example.com", "LECTURE", admin)["id"]}


@pytest.fixture()
def employee_id(api, admin):
    r = api.post("/employees", json={"first_name": "Bob", "last_name": "Durand"}, headers=admin)
    assert r.status_code == 201, r.text
    return r.json()["id"]


def test_user_bootstrap_then_admin_only(api):
    admin = {"X-User-Id": _user(api, "Root@Example.com", "ADMIN")["id"]}

    assert api.post("/users", json={"email": "x@example.com", "role": "ADMIN"}).status_code == 401
    gest = {"X-User-Id": _user(api, "gest@example.com", "GESTIONNAIRE", admin)["id"]}
    r = api.post("/users", json={"email": "y@example.com", "role": "LECTURE"}, headers=gest)
    assert r.status_code == 403

    r = api.post("/users", json={"email": "root@example.com", "role": "LECTURE"}, headers=admin)
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"

    emails = [u["email"] for u in api.get("/users", headers=admin).json()]
    assert emails == ["gest@example.com", "root@example.com"]


def test_auth_required_and_reader_is_read_only(api, admin, reader, employee_id):
    assert api.get("/loans").status_code == 401
    assert api.get("/loans", headers={"X-User-Id": "nobody"}).status_code == 401

    assert api.get("/loans", headers=reader).status_code == 200
    r = api.post("/loans", json={"employee_id": employee_id}, headers=reader)
    assert r.status_code == 403


def test_loan_flow_over_http(api, admin, employee_id):
    r = api.post(
        "/asset-models",
        json={"type": "Ordinateur portable", "brand": "Lenovo", "model_name": "T14", "quantity": 2},
        headers=admin,
    )
    assert r.status_code == 201, r.text
    items = r.json()["asset_items"]
    assert [i["asset_tag"] for i in items] == ["LAP-001", "LAP-002"]

    r = api.post(
        "/asset-models",
        json={"type": "Câble", "brand": "Belkin", "model_name": "USB-C 1m", "quantity": 4},
        headers=admin,
    )
    stock_id = r.json()["stock_item"]["id"]

    r = api.post("/loans", json={"employee_id": employee_id}, headers=admin)
    assert r.status_code == 201, r.text
    loan_id = r.json()["id"]

    r = api.post(f"/loans/{loan_id}/lines", json={"asset_item_id": items[0]["id"]}, headers=admin)
    assert r.status_code == 201, r.text
    r = api.post(f"/loans/{loan_id}/lines", json={"stock_item_id": stock_id, "quantity": 3}, headers=admin)
    assert r.status_code == 201, r.text

    r = api.post(f"/loans/{loan_id}/lines", json={"stock_item_id": stock_id, "quantity": 3}, headers=admin)
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "validation"
    assert body["details"]["available"] == 1

    r = api.get(f"/asset-items/{items[0]['id']}", headers=admin)
    assert r.json()["status"] == "PRETE"

    r = api.patch(f"/loans/{loan_id}/close", headers=admin)
    assert r.status_code == 200
    assert r.json()["status"] == "CLOSED"
    assert api.patch(f"/loans/{loan_id}/close", headers=admin).status_code == 400

    assert api.get(f"/stock-items/{stock_id}", headers=admin).json()["loaned"] == 0
    assert api.get("/loans?status=CLOSED", headers=admin).json()[0]["id"] == loan_id


def test_error_status_mapping(api, admin, employee_id):
    r = api.get("/loans/missing", headers=admin)
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"

    r = api.post("/loans", json={"employee_id": "missing"}, headers=admin)
    assert r.status_code == 404

    loan_id = api.post("/loans", json={"employee_id": employee_id}, headers=admin).json()["id"]
    r = api.post(f"/loans/{loan_id}/lines", json={}, headers=admin)
    assert r.status_code == 400

    r = api.delete(f"/employees/{employee_id}", headers=admin)
    assert r.status_code == 400


def test_delete_and_batch_delete_over_http(api, admin, employee_id):
    ids = [api.post("/loans", json={"employee_id": employee_id}, headers=admin).json()["id"] for _ in range(3)]

    r = api.delete(f"/loans/{ids[0]}", headers=admin)
    assert r.status_code == 200
    assert r.json()["deleted_by_id"] == admin["X-User-Id"]
    assert api.get(f"/loans/{ids[0]}", headers=admin).status_code == 404

    r = api.post("/loans/batch-delete", json={"loan_ids": ids[1:]}, headers=admin)
    assert r.status_code == 200
    assert r.json()["deleted_count"] == 2
    assert api.get("/loans", headers=admin).json() == []


def test_signature_upload_and_delete(api, admin, employee_id, store):
    loan_id = api.post("/loans", json={"employee_id": employee_id}, headers=admin).json()["id"]

    r = api.post(
        f"/loans/{loan_id}/pickup-signature",
        files={"file": ("sig.png", b"\x89PNG fake", "image/png")},
        headers=admin,
    )
    assert r.status_code == 200, r.text
    url = r.json()["pickup_signature_url"]
    assert url.startswith("/uploads/signatures/")
    assert store.path_for(url).exists()

    r = api.post(
        f"/loans/{loan_id}/return-signature",
        files={"file": ("sig.png", b"", "image/png")},
        headers=admin,
    )
    assert r.status_code == 400

    r = api.delete(f"/loans/{loan_id}/pickup-signature", headers=admin)
    assert r.status_code == 200
    assert r.json()["pickup_signature_url"] is None
    assert not store.path_for(url).exists()

    r = api.post(
        "/loans/missing/pickup-signature",
        files={"file": ("sig.png", b"data", "image/png")},
        headers=admin,
    )
    assert r.status_code == 404
