from artmarket.content import find_product
from artmarket.models import ActivityEvent, ProductSubmission, db
from artmarket.tests.support import admin_token, auth_headers, create_admin_product, signup


def submit(client, token, payload):
    return client.post("/api/submissions", json=payload, headers=auth_headers(token))


def test_vendor_create_submission_approve_flow(client, app):
    vendor, vendor_token = signup(client, "vendor")
    token = admin_token(client)

    response = submit(client, vendor_token, {
        "product": {"id": "v-vase-1", "name": "Blue Vase", "gallery_type": "art", "owner_user_id": 999},
        "note": "First piece",
    })
    assert response.status_code == 201, response.get_json()
    body = response.get_json()
    assert body["rejectedItems"] == []
    created = body["submissions"][0]
    assert created["status"] == "pending"
    assert created["submissionType"] == "create"
    assert created["baseSnapshot"] is None
    assert created["snapshot"]["owner_user_id"] == vendor["id"]
    assert created["vendorNote"] == "First piece"

    # Not live until approved.
    assert client.get("/api/products/v-vase-1").status_code == 404

    queue = client.get("/api/admin/submissions?status=pending", headers=auth_headers(token))
    assert queue.status_code == 200
    assert [item["id"] for item in queue.get_json()["items"]] == [created["id"]]

    approved = client.patch(f"/api/admin/submissions/{created['id']}/approve", headers=auth_headers(token))
    assert approved.status_code == 200, approved.get_json()
    assert approved.get_json()["submission"]["status"] == "approved"
    assert approved.get_json()["submission"]["reviewedByName"] == "Admin User"

    live = client.get("/api/products/v-vase-1")
    assert live.status_code == 200
    assert live.get_json()["product"]["name"] == "Blue Vase"
    assert live.get_json()["product"]["owner_user_id"] == vendor["id"]

    search = client.get("/api/products", query_string={"search": "blue vase"})
    assert [item["id"] for item in search.get_json()["items"]] == ["v-vase-1"]

    with app.app_context():
        actions = [event.action for event in ActivityEvent.query.filter_by(domain="submissions").order_by(ActivityEvent.id).all()]
        assert actions == ["create", "approve"]


def test_update_submission_records_base_snapshot_and_diff(client):
    vendor, vendor_token = signup(client, "vendor")
    token = admin_token(client)
    first = submit(client, vendor_token, {"product": {"id": "v-bowl", "name": "Bowl"}}).get_json()
    client.patch(f"/api/admin/submissions/{first['submissions'][0]['id']}/approve", headers=auth_headers(token))

    response = submit(client, vendor_token, {"product_changes": [{"id": "v-bowl", "name": "Large Bowl"}]})
    assert response.status_code == 201
    submission = response.get_json()["submissions"][0]
    assert submission["submissionType"] == "update"
    assert submission["baseSnapshot"]["name"] == "Bowl"

    detail = client.get(f"/api/submissions/{submission['id']}", headers=auth_headers(vendor_token))
    assert detail.status_code == 200
    entries = {entry["path"]: entry for entry in detail.get_json()["submission"]["diff"]}
    assert entries["name"]["currentValue"] == "Bowl"
    assert entries["name"]["requestedValue"] == "Large Bowl"
    assert entries["name"]["changed"] is True
    assert entries["gallery_type"]["changed"] is False


def test_vendor_cannot_touch_admin_or_foreign_products(client, app):
    token = admin_token(client)
    create_admin_product(client, token, id="admin-owned")
    _, vendor_a = signup(client, "vendor")
    _, vendor_b = signup(client, "vendor")

    denied = submit(client, vendor_a, {"product": {"id": "admin-owned", "name": "Mine now"}})
    assert denied.status_code == 403
    assert denied.get_json()["code"] == "ownership_violation"
    assert denied.get_json()["error"] == "You can edit only your own products."

    created = submit(client, vendor_a, {"product": {"id": "a-owned", "name": "A"}}).get_json()
    client.patch(f"/api/admin/submissions/{created['submissions'][0]['id']}/approve", headers=auth_headers(token))

    foreign = submit(client, vendor_b, {"product": {"id": "a-owned", "name": "Stolen"}})
    assert foreign.status_code == 403

    with app.app_context():
        assert ProductSubmission.query.count() == 1


def test_vendor_cannot_submit_sections(client):
    _, vendor_token = signup(client, "vendor")
    response = submit(client, vendor_token, {"sections": {"home": {}}, "products": [{"id": "x"}]})
    assert response.status_code == 403
    assert response.get_json()["error"] == "Vendors can edit products only."

    empty = submit(client, vendor_token, {"products": []})
    assert empty.status_code == 400
    assert empty.get_json()["error"] == "Please provide at least one product change."


def test_batch_submission_is_best_effort(client, app):
    token = admin_token(client)
    create_admin_product(client, token, id="admin-piece")
    _, vendor_token = signup(client, "vendor")

    response = submit(client, vendor_token, {
        "products": [
            {"id": "ok-1", "name": "Fine"},
            {"id": "admin-piece", "name": "Nope"},
            "not-an-object",
            {"id": "ok-2", "name": "Also fine"},
        ]
    })
    assert response.status_code == 201
    body = response.get_json()
    assert [item["productId"] for item in body["submissions"]] == ["ok-1", "ok-2"]
    assert [(item["index"], item["productId"]) for item in body["rejectedItems"]] == [
        (1, "admin-piece"),
        (2, None),
    ]
    assert body["rejectedItems"][1]["error"] == "Each product change must be an object."


def test_review_is_single_transition(client):
    _, vendor_token = signup(client, "vendor")
    token = admin_token(client)
    created = submit(client, vendor_token, {"product": {"id": "once", "name": "Once"}}).get_json()
    submission_id = created["submissions"][0]["id"]

    no_reason = client.patch(
        f"/api/admin/submissions/{submission_id}/reject",
        json={"reason": "   "},
        headers=auth_headers(token),
    )
    assert no_reason.status_code == 400

    too_long = client.patch(
        f"/api/admin/submissions/{submission_id}/reject",
        json={"reason": "x" * 2001},
        headers=auth_headers(token),
    )
    assert too_long.status_code == 400

    rejected = client.patch(
        f"/api/admin/submissions/{submission_id}/reject",
        json={"reason": "Photos are blurry."},
        headers=auth_headers(token),
    )
    assert rejected.status_code == 200
    assert rejected.get_json()["submission"]["rejectionReason"] == "Photos are blurry."

    again = client.patch(f"/api/admin/submissions/{submission_id}/approve", headers=auth_headers(token))
    assert again.status_code == 409
    assert again.get_json()["error"] == "Only pending submissions can be reviewed."

    missing = client.patch("/api/admin/submissions/99999/approve", headers=auth_headers(token))
    assert missing.status_code == 404

    assert client.get("/api/products/once").status_code == 404


def test_rejection_leaves_catalog_untouched(client, app):
    _, vendor_token = signup(client, "vendor")
    token = admin_token(client)
    created = submit(client, vendor_token, {"product": {"id": "never", "name": "Never"}}).get_json()
    client.patch(
        f"/api/admin/submissions/{created['submissions'][0]['id']}/reject",
        json={"reason": "Not a fit."},
        headers=auth_headers(token),
    )
    with app.app_context():
        assert find_product("never") is None


def test_submission_visibility_is_scoped(client):
    _, vendor_a = signup(client, "vendor")
    _, vendor_b = signup(client, "vendor")
    token = admin_token(client)
    created = submit(client, vendor_a, {"product": {"id": "scoped", "name": "Scoped"}}).get_json()
    submission_id = created["submissions"][0]["id"]

    own = client.get("/api/submissions", headers=auth_headers(vendor_a))
    assert own.get_json()["paging"]["total"] == 1
    other = client.get("/api/submissions", headers=auth_headers(vendor_b))
    assert other.get_json()["paging"]["total"] == 0
    assert client.get(f"/api/submissions/{submission_id}", headers=auth_headers(vendor_b)).status_code == 404

    assert client.get("/api/admin/submissions", headers=auth_headers(vendor_a)).status_code == 403
    assert client.get("/api/admin/submissions").status_code == 401
    assert client.get("/api/admin/submissions?search=scoped", headers=auth_headers(token)).get_json()["paging"]["total"] == 1


def test_legacy_edit_endpoints(client):
    _, vendor_token = signup(client, "vendor")
    _, user_token = signup(client, "user")
    token = admin_token(client)

    invalid = client.post(
        "/api/edits",
        json={"title": "", "description": "", "payload": "{broken"},
        headers=auth_headers(vendor_token),
    )
    assert invalid.status_code == 400
    assert invalid.get_json()["error"] == "Title is required. Description is required. Payload must be valid JSON."

    response = client.post(
        "/api/edits",
        json={
            "title": "New print",
            "description": "Adding a print",
            "payload": '{"products": [{"id": "print-1", "name": "Print"}]}',
        },
        headers=auth_headers(vendor_token),
    )
    assert response.status_code == 201
    edit = response.get_json()["edit"]
    assert response.get_json()["message"] == "Edit submitted. Status is now Pending."
    assert edit["title"] == "New print"
    assert edit["description"] == "Adding a print"
    assert edit["payload"]["target"] == "vendor_products"
    assert edit["payload"]["product_changes"][0]["id"] == "print-1"

    assert client.get("/api/edits", headers=auth_headers(user_token)).get_json() == {"edits": []}
    assert len(client.get("/api/edits", headers=auth_headers(vendor_token)).get_json()["edits"]) == 1
    assert len(client.get("/api/edits?status=pending", headers=auth_headers(token)).get_json()["edits"]) == 1

    bad_id = client.patch("/api/edits/abc/approve", headers=auth_headers(token))
    assert bad_id.status_code == 400
    assert bad_id.get_json()["error"] == "Edit id must be a positive integer."
    assert client.patch("/api/edits/4040/approve", headers=auth_headers(token)).status_code == 404

    approved = client.patch(f"/api/edits/{edit['id']}/approve", headers=auth_headers(token))
    assert approved.status_code == 200
    assert approved.get_json()["message"] == "Edit approved and applied to live content."
    assert approved.get_json()["edit"]["status"] == "approved"

    repeat = client.patch(f"/api/edits/{edit['id']}/reject", json={"reason": "late"}, headers=auth_headers(token))
    assert repeat.status_code == 409
    assert repeat.get_json()["error"] == "Only pending edits can be reviewed."

    assert client.get("/api/products/print-1").status_code == 200


def test_approved_product_carries_every_snapshot_field(client):
    vendor, vendor_token = signup(client, "vendor")
    token = admin_token(client)
    created = submit(client, vendor_token, {"product": {
        "id": "full-1",
        "name": "Full Record",
        "gallery_type": "sculpture",
        "year": "1999",
        "base_price": "12.5",
        "rating": True,
        "media_images": ["one.jpg", "two.jpg"],
        "extra_note": "kept",
    }}).get_json()["submissions"][0]
    snapshot = created["snapshot"]
    assert snapshot["year"] == 1999
    assert snapshot["base_price"] == 12.5
    assert snapshot["rating"] is None
    assert snapshot["extra_fields"] == {"extra_note": "kept"}

    client.patch(f"/api/admin/submissions/{created['id']}/approve", headers=auth_headers(token))
    live = client.get("/api/products/full-1").get_json()["product"]
    for field, value in snapshot.items():
        if field in ("created_at", "updated_at"):
            continue
        assert live[field] == value, field
    assert live["owner_user_id"] == vendor["id"]


def test_update_approval_keeps_created_at(client):
    _, vendor_token = signup(client, "vendor")
    token = admin_token(client)
    first = submit(client, vendor_token, {"product": {"id": "dated", "name": "Dated"}}).get_json()
    client.patch(f"/api/admin/submissions/{first['submissions'][0]['id']}/approve", headers=auth_headers(token))
    original = client.get("/api/products/dated").get_json()["product"]

    second = submit(client, vendor_token, {"product": {"id": "dated", "name": "Dated v2", "created_at": "2001-01-01T00:00:00.000Z"}}).get_json()
    client.patch(f"/api/admin/submissions/{second['submissions'][0]['id']}/approve", headers=auth_headers(token))
    live = client.get("/api/products/dated").get_json()["product"]
    assert live["name"] == "Dated v2"
    assert live["created_at"] == original["created_at"]


def test_refused_second_review_leaves_submission_unchanged(client, app):
    _, vendor_token = signup(client, "vendor")
    token = admin_token(client)
    created = submit(client, vendor_token, {"product": {"id": "twice", "name": "Twice"}}).get_json()
    submission_id = created["submissions"][0]["id"]
    client.patch(f"/api/admin/submissions/{submission_id}/reject", json={"reason": "r1"}, headers=auth_headers(token))

    with app.app_context():
        first = db.session.get(ProductSubmission, submission_id)
        recorded = (first.status, first.rejection_reason, first.reviewed_by, first.reviewed_at)

    assert client.patch(
        f"/api/admin/submissions/{submission_id}/reject",
        json={"reason": "r2"},
        headers=auth_headers(token),
    ).status_code == 409
    assert client.patch(f"/api/admin/submissions/{submission_id}/approve", headers=auth_headers(token)).status_code == 409

    with app.app_context():
        after = db.session.get(ProductSubmission, submission_id)
        assert (after.status, after.rejection_reason, after.reviewed_by, after.reviewed_at) == recorded
    assert client.get("/api/products/twice").status_code == 404


def test_later_approval_of_competing_creates_wins(client):
    first_vendor, first_token = signup(client, "vendor")
    second_vendor, second_token = signup(client, "vendor")
    token = admin_token(client)
    first = submit(client, first_token, {"product": {"id": "contested", "name": "First"}}).get_json()
    second = submit(client, second_token, {"product": {"id": "contested", "name": "Second"}}).get_json()
    assert second["submissions"][0]["submissionType"] == "create"

    client.patch(f"/api/admin/submissions/{first['submissions'][0]['id']}/approve", headers=auth_headers(token))
    assert client.get("/api/products/contested").get_json()["product"]["owner_user_id"] == first_vendor["id"]

    approved = client.patch(f"/api/admin/submissions/{second['submissions'][0]['id']}/approve", headers=auth_headers(token))
    assert approved.status_code == 200
    live = client.get("/api/products/contested").get_json()["product"]
    assert live["name"] == "Second"
    assert live["owner_user_id"] == second_vendor["id"]
