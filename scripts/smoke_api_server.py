#!/usr/bin/env python3
"""
HTTP API smoke-check on an in-memory backend.

What it validates:
- sessions: any e-mail logs in, admin role only for ADMIN_EMAILS
- owner wizard over HTTP: draft PUT/GET, advance, multipart document upload, submit
- another user cannot read someone else's draft
- admin verification via PATCH .../verification
- owner menus/items, public menu, reviews and the QR code PNG
- error shape: 401 without a token, 400 with field_errors, 404 for unknown QR codes

Run:
  python3 scripts/smoke_api_server.py
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from pathlib import Path
import sys

from aiohttp import FormData
from aiohttp.test_utils import TestClient, TestServer


def _setup_import_path() -> None:
    for candidate in (
        Path(__file__).resolve().parents[1] / "src",
        Path.cwd() / "src",
        Path("/app/src"),
    ):
        if candidate.exists():
            sys.path.insert(0, str(candidate))
            return


_setup_import_path()

from api_server import build_services, create_api_app  # noqa: E402
from config import CFG  # noqa: E402


ADMIN_EMAIL = "admin@dizmen.example"
FORM = {
    "name": "Test Cafe",
    "address": "Moda Cd. 5, Kadikoy, Istanbul",
    "website": "https://testcafe.example",
}


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


async def _login(client: TestClient, email: str) -> tuple[dict[str, str], dict]:
    resp = await client.post("/api/v1/auth/session", json={"email": email})
    _assert(resp.status == 200, f"login failed for {email}: {resp.status}")
    data = await resp.json()
    return {"Authorization": f"Bearer {data['token']}"}, data["user"]


async def _check_wizard(client: TestClient) -> str:
    owner, user = await _login(client, "owner@testcafe.example")
    _assert(user["role"] == "restaurant_authority", "owners get restaurant_authority")
    stranger, _ = await _login(client, "stranger@example.com")

    resp = await client.get("/api/v1/onboarding")
    _assert(resp.status == 401, "wizard needs a session")
    body = await resp.json()
    _assert(body["status"] == "error", "401 body uses the error envelope")
    resp = await client.get("/api/v1/onboarding", headers={"Authorization": "Bearer café.deadbeef"})
    _assert(resp.status == 401, f"non-ASCII bearer token is 401, got {resp.status}")

    draft_url = f"/api/v1/users/{user['user_id']}/draft"
    resp = await client.put(draft_url, json={"step": "restaurant_info", "form_data": {"name": "Test"}}, headers=owner)
    _assert(resp.status == 200, f"draft save failed: {resp.status}")
    draft = (await resp.json())["draft"]
    _assert(draft["version"] == 1 and draft["form_data"]["name"] == "Test", "draft stored")

    resp = await client.get(draft_url, headers=stranger)
    _assert(resp.status == 403, "drafts are private to their owner")
    resp = await client.get(draft_url, headers=owner)
    _assert((await resp.json())["draft"]["form_data"]["name"] == "Test", "draft reloads")

    resp = await client.post(
        "/api/v1/onboarding/advance",
        json={"form_data": {"name": "", "address": ""}, "expected_version": 1},
        headers=owner,
    )
    _assert(resp.status == 400, "advance validates required fields")
    errors = (await resp.json())["field_errors"]
    _assert({"name", "address"} <= set(errors), f"field errors name the fields: {errors}")

    resp = await client.post(
        "/api/v1/onboarding/advance",
        json={"form_data": FORM, "expected_version": 1},
        headers=owner,
    )
    _assert(resp.status == 200, f"advance failed: {resp.status}")
    _assert((await resp.json())["draft"]["step"] == "verification_documents", "advance moves to documents")

    resp = await client.post("/api/v1/restaurants", json={"form_data": FORM}, headers=owner)
    _assert(resp.status == 400, "review mode needs documents before submit")

    form = FormData()
    form.add_field("document_type", "business_license")
    form.add_field("file", b"%PDF-1.4 smoke", filename="license.pdf", content_type="application/pdf")
    resp = await client.post("/api/v1/onboarding/documents", data=form, headers=owner)
    _assert(resp.status == 200, f"upload failed: {resp.status}")
    document = (await resp.json())["document"]
    _assert(document["file_name"] == "license.pdf", "document metadata returned")

    bad = FormData()
    bad.add_field("file", b"MZ", filename="virus.exe", content_type="application/octet-stream")
    resp = await client.post("/api/v1/onboarding/documents", data=bad, headers=owner)
    _assert(resp.status == 422, "unsupported file types are refused")

    headers = {**owner, "Idempotency-Key": "api-smoke-1"}
    resp = await client.post("/api/v1/restaurants", json={"form_data": FORM}, headers=headers)
    _assert(resp.status == 200, f"submit failed: {resp.status}")
    submitted = await resp.json()
    restaurant = submitted["restaurant"]
    _assert(restaurant["verification_status"] == "pending", "review mode submits as pending")
    _assert(submitted["menu_url"].endswith(f"/menu/{restaurant['qr_code']}"), "menu url uses the QR code")

    resp = await client.post("/api/v1/restaurants", json={"form_data": FORM}, headers=headers)
    again = (await resp.json())["restaurant"]
    _assert(again["id"] == restaurant["id"], "retried submit returns the same restaurant")

    resp = await client.get("/api/v1/onboarding", headers=owner)
    wizard = (await resp.json())["wizard"]
    _assert(wizard["mode"] == "dashboard", "registered owners land on the dashboard")
    _assert(wizard["status_title"], "dashboard shows the status title")
    return restaurant["id"]


async def _check_admin(client: TestClient, restaurant_id: str) -> None:
    owner, _ = await _login(client, "owner@testcafe.example")
    admin, user = await _login(client, ADMIN_EMAIL)
    _assert(user["role"] == "super_admin", "configured e-mail gets super_admin")

    resp = await client.get("/api/v1/admin/restaurants?status=pending", headers=owner)
    _assert(resp.status == 403, "owners cannot open the admin list")
    resp = await client.get("/api/v1/admin/restaurants?status=pending", headers=admin)
    listed = (await resp.json())["restaurants"]
    _assert([r["id"] for r in listed] == [restaurant_id], "pending restaurant is listed")

    resp = await client.get(f"/api/v1/admin/restaurants/{restaurant_id}", headers=admin)
    details = await resp.json()
    _assert(len(details["documents"]) == 1, "admin sees the uploaded document")

    url = f"/api/v1/restaurants/{restaurant_id}/verification"
    resp = await client.patch(url, json={"action": "block", "reason": ""}, headers=admin)
    _assert(resp.status == 400, "block needs a reason")
    resp = await client.patch(url, json={"action": "verify", "expected_status": "pending"}, headers=admin)
    _assert(resp.status == 200, f"verify failed: {resp.status}")
    _assert((await resp.json())["restaurant"]["verification_status"] == "verified", "restaurant verified")
    resp = await client.patch(url, json={"action": "reject", "reason": "late", "expected_status": "pending"}, headers=admin)
    _assert(resp.status == 409, "stale expected_status conflicts")


async def _check_menus(client: TestClient) -> None:
    owner, _ = await _login(client, "owner@testcafe.example")

    resp = await client.post("/api/v1/menus", json={"name": ""}, headers=owner)
    _assert(resp.status == 400, "menu name is required")
    _assert("name" in (await resp.json())["field_errors"], "field error for name")

    resp = await client.post("/api/v1/menus", json={"name": "All day", "icon": "☕"}, headers=owner)
    menu = (await resp.json())["menu"]
    _assert(menu["order"] == 1 and menu["available_now"], "menu without hours is always available")

    resp = await client.post(
        f"/api/v1/menus/{menu['id']}/items",
        json={"name": "Tea", "price": 1.5, "category": "Hot"},
        headers=owner,
    )
    item = (await resp.json())["item"]
    _assert(item["price"] == 1.5, "item created")

    resp = await client.get(f"/api/v1/menus/{menu['id']}/items", headers=owner)
    _assert([i["name"] for i in (await resp.json())["items"]] == ["Tea"], "items listed")

    resp = await client.get("/api/v1/restaurant/qr", headers=owner)
    _assert(resp.status == 200 and resp.content_type == "image/png", "QR code served as PNG")
    _assert((await resp.read()).startswith(b"\x89PNG"), "QR body is a PNG")

    resp = await client.get("/api/v1/onboarding", headers=owner)
    qr_code = (await resp.json())["wizard"]["restaurant"]["qr_code"]

    resp = await client.get(f"/api/v1/public/menu/{qr_code}")
    page = await resp.json()
    _assert(page["available"], "verified restaurant is public")
    _assert(page["menus"][0]["categories"]["Hot"][0]["item"]["name"] == "Tea", "public menu groups by category")
    _assert(page["menus"][0]["categories"]["Hot"][0]["price_display"] == "$1.50", "formatted price in the payload")
    _assert("owner_id" not in page["restaurant"], "public payload hides the owner")

    resp = await client.post(f"/api/v1/public/items/{item['id']}/reviews", json={"rating": 9})
    _assert(resp.status == 400, "rating must be 1-5")
    resp = await client.post(f"/api/v1/public/items/{item['id']}/reviews", json={"rating": 4, "comment": "Nice"})
    _assert((await resp.json())["review"]["customer_name"] == "Anonymous", "anonymous review stored")
    resp = await client.get(f"/api/v1/public/items/{item['id']}/reviews")
    _assert((await resp.json())["average_rating"] == 4.0, "average rating returned")

    resp = await client.delete(f"/api/v1/menus/{menu['id']}", headers=owner)
    _assert(resp.status == 400, "non-empty menu needs the confirmation phrase")
    resp = await client.delete(
        f"/api/v1/menus/{menu['id']}",
        params={"confirmation": "delete all my related items"},
        headers=owner,
    )
    _assert((await resp.json())["deleted_items"] == 1, "menu delete cascades")

    resp = await client.get("/api/v1/public/menu/rest-unknown")
    _assert(resp.status == 404, "unknown QR code is 404")


async def _run_checks(upload_dir: Path) -> None:
    CFG.session_secret = "smoke-api-secret"
    CFG.admin_emails = [ADMIN_EMAIL]
    services = build_services(memory=True, upload_dir=upload_dir, document_review=True)
    client = TestClient(TestServer(create_api_app(services)))
    await client.start_server()
    try:
        resp = await client.get("/api/v1/health")
        _assert((await resp.json())["status"] == "ok", "health check")
        restaurant_id = await _check_wizard(client)
        await _check_admin(client, restaurant_id)
        await _check_menus(client)
    finally:
        await client.close()


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="dizmen-smoke-api-"))
    try:
        asyncio.run(_run_checks(tmpdir))
        print("OK: api server smoke passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
