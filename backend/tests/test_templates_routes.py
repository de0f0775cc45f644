from __future__ import annotations

import pytest

from billsplit.api.routes.bills import router as bills_router
from billsplit.api.routes.templates import router as templates_router


@pytest.fixture
def client(make_client, create_user):
    return make_client(templates_router, bills_router, user_id=create_user("tmpl@example.com"))


def _template(client, name="Flatmates", participants=("Ann", "Ben")):
    resp = client.post(
        "/templates",
        json={"name": name, "participants": [{"name": n} for n in participants]},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_list_update_delete(client):
    tmpl = _template(client)
    assert [p["name"] for p in tmpl["participants"]] == ["Ann", "Ben"]
    assert client.get("/templates").json()[0]["id"] == tmpl["id"]

    resp = client.put(f"/templates/{tmpl['id']}", json={"participants": [{"name": "Cy", "color": "45b7d1"}]})
    assert resp.status_code == 200
    assert resp.json()["participants"] == [{"id": resp.json()["participants"][0]["id"], "name": "Cy", "color": "#45B7D1"}]

    assert client.delete(f"/templates/{tmpl['id']}").status_code == 204
    assert client.get(f"/templates/{tmpl['id']}").status_code == 404


def test_invalid_color_rejected(client):
    resp = client.post("/templates", json={"name": "Bad", "participants": [{"name": "A", "color": "blue"}]})
    assert resp.status_code == 422


def test_apply_template_creates_bill(client):
    tmpl = _template(client)
    resp = client.post(f"/templates/{tmpl['id']}/apply", json={"title": "March rent", "total_amount": 1200})
    assert resp.status_code == 201
    bill = resp.json()
    assert bill["title"] == "March rent"
    assert [p["name"] for p in bill["participants"]] == ["Ann", "Ben"]
    assert client.get(f"/bills/{bill['id']}").status_code == 200


def test_free_plan_template_limit(client):
    _template(client, name="one")
    _template(client, name="two")
    resp = client.post("/templates", json={"name": "three", "participants": []})
    assert resp.status_code == 402
    assert resp.json()["details"]["quota"] == "templates"
