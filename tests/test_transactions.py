from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from workshop.models import Item, Transaction


def _checkout(client, headers, code="DRL-001", path="/transactions/checkout", **extra):
    return client.post(path, json={"code": code, **extra}, headers=headers)


def _checkin(client, headers, code="DRL-001", path="/transactions/checkin", **extra):
    return client.post(path, json={"code": code, **extra}, headers=headers)


def test_checkout_and_checkin(client, staff, make_item, auth_headers):
    make_item("DRL-001")
    h = auth_headers(staff)

    r = _checkout(client, h, "drl-001", checkoutPerson="Nimal", projectName="Bridge rig", notes="for site B")
    assert r.status_code == 200
    data = r.json()
    assert data["message"] == "Item checked out successfully"
    assert data["item"]["status"] == "Outside"
    assert data["item"]["currentUser"] == {"id": staff.id, "name": "Kasun"}
    assert data["item"]["checkoutPerson"] == "Nimal"
    assert data["item"]["projectName"] == "Bridge rig"
    tx = data["transaction"]
    assert tx["action"] == "CheckOut"
    assert tx["userId"] == staff.id
    assert tx["userName"] == "Kasun"
    assert tx["itemCode"] == "DRL-001"
    assert tx["notes"] == "for site B"

    r2 = _checkin(client, h)
    assert r2.status_code == 200
    data2 = r2.json()
    assert data2["message"] == "Item checked in successfully"
    assert data2["item"]["status"] == "Inside"
    assert data2["item"]["currentUser"] is None
    assert data2["item"]["checkoutPerson"] is None
    assert data2["item"]["projectName"] is None
    assert data2["transaction"]["action"] == "CheckIn"


def test_round_trip_restores_item(client, staff, make_item, auth_headers):
    before = make_item("DRL-001", location="Shelf A", description="18V")
    h = auth_headers(staff)
    _checkout(client, h)
    _checkin(client, h)

    after = client.get(f"/items/{before.id}", headers=h).json()["item"]
    assert after["status"] == "Inside"
    assert after["name"] == before.name
    assert after["category"] == before.category
    assert after["location"] == "Shelf A"
    assert after["description"] == "18V"


def test_checkout_person_defaults_to_actor(client, staff, make_item, auth_headers):
    make_item("DRL-001")
    r = _checkout(client, auth_headers(staff))
    assert r.json()["item"]["checkoutPerson"] == "Kasun"
    assert r.json()["transaction"]["checkoutPerson"] == "Kasun"


def test_checkout_twice(client, staff, admin, make_item, auth_headers):
    make_item("DRL-001")
    assert _checkout(client, auth_headers(staff)).status_code == 200

    r = _checkout(client, auth_headers(admin))
    assert r.status_code == 409
    assert r.json() == {"success": False, "code": "ITEM_ALREADY_OUT", "message": "Item is already checked out"}


def test_checkin_when_inside(client, staff, make_item, auth_headers):
    make_item("DRL-001")
    r = _checkin(client, auth_headers(staff))
    assert r.status_code == 409
    assert r.json()["code"] == "ITEM_ALREADY_IN"


@pytest.mark.parametrize("path", ["/transactions/checkout", "/items/checkout"])
def test_checkout_unknown_code(client, staff, auth_headers, session, path):
    r = _checkout(client, auth_headers(staff), "ABC123", path=path)
    assert r.status_code == 404
    assert r.json()["code"] == "ITEM_NOT_FOUND"
    assert session.exec(select(Transaction)).all() == []


def test_item_aliases(client, staff, make_item, auth_headers):
    make_item("DRL-001")
    h = auth_headers(staff)

    assert _checkout(client, h, path="/items/checkout").json()["item"]["status"] == "Outside"
    assert _checkin(client, h, path="/items/checkin").json()["item"]["status"] == "Inside"


@pytest.mark.parametrize("who", ["viewer", "user_admin"])
def test_checkout_forbidden(client, request, make_item, auth_headers, session, who):
    make_item("DRL-001")
    r = _checkout(client, auth_headers(request.getfixturevalue(who)))
    assert r.status_code == 403
    assert r.json()["code"] == "MODIFY_FORBIDDEN"
    assert session.exec(select(Transaction)).all() == []


def test_ledger_and_item_agree(client, staff, admin, make_item, auth_headers, session):
    item = make_item("DRL-001")
    _checkout(client, auth_headers(staff))
    _checkin(client, auth_headers(admin))
    _checkout(client, auth_headers(admin), projectName="Roof")

    session.expire_all()
    rows = session.exec(select(Transaction).order_by(Transaction.id)).all()
    assert [t.action for t in rows] == ["CheckOut", "CheckIn", "CheckOut"]

    stored = session.get(Item, item.id)
    assert stored.status == "Outside"
    assert stored.current_user_id == rows[-1].user_id == admin.id
    assert stored.project_name == "Roof"


def test_history_snapshot_survives_rename(client, staff, admin, make_item, auth_headers):
    item = make_item("DRL-001", name="Cordless drill")
    _checkout(client, auth_headers(staff))

    client.put(f"/items/{item.id}", json={"name": "Impact drill"}, headers=auth_headers(admin))
    client.put(f"/users/{staff.id}", json={"name": "Kasun Perera"}, headers=auth_headers(admin))

    r = client.get(f"/transactions/item/{item.id}", headers=auth_headers(admin))
    assert r.status_code == 200
    tx = r.json()["transactions"][0]
    assert tx["itemName"] == "Cordless drill"
    assert tx["userName"] == "Kasun"


def test_list_transactions_filters(client, staff, admin, make_item, auth_headers):
    make_item("DRL-001")
    make_item("SAW-001")
    _checkout(client, auth_headers(staff), "DRL-001")
    _checkin(client, auth_headers(staff), "DRL-001")
    _checkout(client, auth_headers(admin), "SAW-001")
    h = auth_headers(staff)

    r = client.get("/transactions", headers=h)
    data = r.json()
    assert data["total"] == 3
    assert [t["action"] for t in data["transactions"]] == ["CheckOut", "CheckIn", "CheckOut"]
    assert data["transactions"][0]["itemCode"] == "SAW-001"

    r = client.get("/transactions", params={"action": "CheckOut"}, headers=h)
    assert r.json()["total"] == 2

    r = client.get("/transactions", params={"user_id": admin.id}, headers=h)
    assert r.json()["total"] == 1

    r = client.get("/transactions", params={"sort": "oldest", "limit": 1}, headers=h)
    data = r.json()
    assert data["count"] == 1
    assert data["transactions"][0]["itemCode"] == "DRL-001"
    assert data["transactions"][0]["action"] == "CheckOut"


def test_list_transactions_date_range(client, staff, make_item, auth_headers):
    make_item("DRL-001")
    _checkout(client, auth_headers(staff))
    h = auth_headers(staff)

    r = client.get("/transactions", params={"start": "2000-01-01", "end": "2000-01-31"}, headers=h)
    assert r.json()["total"] == 0

    r = client.get("/transactions", params={"start": "2000-01-01", "end": "2999-12-31", "tz": "Asia/Colombo"}, headers=h)
    assert r.json()["total"] == 1

    r = client.get("/transactions", params={"start": "2026-02-01", "end": "2026-01-01"}, headers=h)
    assert r.status_code == 400

    r = client.get("/transactions", params={"start": "yesterday"}, headers=h)
    assert r.status_code == 400

    r = client.get("/transactions", params={"tz": "Mars/Olympus"}, headers=h)
    assert r.status_code == 400


def test_recent_transactions(client, staff, viewer, make_item, auth_headers):
    make_item("DRL-001")
    _checkout(client, auth_headers(staff))
    _checkin(client, auth_headers(staff))

    r = client.get("/transactions/recent", headers=auth_headers(viewer))
    assert r.status_code == 200
    data = r.json()
    assert data["count"] == 2
    assert data["transactions"][0]["action"] == "CheckIn"


def test_item_history(client, staff, make_item, auth_headers):
    drill = make_item("DRL-001")
    make_item("SAW-001")
    _checkout(client, auth_headers(staff), "DRL-001")
    _checkout(client, auth_headers(staff), "SAW-001")
    _checkin(client, auth_headers(staff), "DRL-001")

    r = client.get(f"/transactions/item/{drill.id}", headers=auth_headers(staff))
    rows = r.json()["transactions"]
    assert [t["action"] for t in rows] == ["CheckIn", "CheckOut"]
    assert all(t["itemId"] == drill.id for t in rows)


def test_ledger_append_failure_leaves_item_unchanged(client, staff, make_item, auth_headers, engine, session):
    item = make_item("DRL-001")
    Transaction.__table__.drop(engine)

    r = _checkout(client, auth_headers(staff))
    assert r.status_code == 500
    assert r.json()["code"] == "LEDGER_APPEND_FAILED"

    session.expire_all()
    stored = session.get(Item, item.id)
    assert stored.status == "Inside"
    assert stored.current_user_id is None


def test_reconcile(client, admin, staff, make_item, auth_headers, session):
    make_item("DRL-001")
    broken = make_item("SAW-001")
    _checkout(client, auth_headers(staff), "DRL-001")

    r = client.get("/transactions/reconcile", headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json() == {"success": True, "consistent": True, "checked": 2, "issues": []}

    # 绕过 ledger 直接改库
    broken.status = "Outside"
    broken.checkout_person = "Nobody"
    session.add(broken)
    session.commit()

    data = client.get("/transactions/reconcile", headers=auth_headers(admin)).json()
    assert data["consistent"] is False
    assert [i["itemCode"] for i in data["issues"]] == ["SAW-001"]
    assert data["issues"][0]["problem"] == "Item is Outside but has no ledger entries"


def test_reconcile_admin_only(client, staff, auth_headers):
    r = client.get("/transactions/reconcile", headers=auth_headers(staff))
    assert r.status_code == 403
    assert r.json()["code"] == "ADMIN_REQUIRED"


def test_datetime_range_round_trip(client, staff, make_item, auth_headers):
    make_item("DRL-001")
    assert _checkout(client, auth_headers(staff)).status_code == 200
    h = auth_headers(staff)

    now = datetime.now(timezone.utc)
    around = {
        "start": (now - timedelta(minutes=5)).isoformat(),
        "end": (now + timedelta(minutes=5)).isoformat(),
    }
    r = client.get("/transactions", params=around, headers=h)
    assert r.status_code == 200
    assert r.json()["total"] == 1

    later = {"start": (now + timedelta(minutes=5)).strftime("%Y-%m-%dT%H:%M:%SZ")}
    r = client.get("/transactions", params=later, headers=h)
    assert r.json()["total"] == 0

    # 同一时刻换成 +05:30 写法，结果一样
    colombo = timezone(timedelta(hours=5, minutes=30))
    r = client.get(
        "/transactions",
        params={"start": (now - timedelta(minutes=5)).astimezone(colombo).isoformat()},
        headers=h,
    )
    assert r.json()["total"] == 1
