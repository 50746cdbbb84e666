import pytest

from artmarket.content import (
    SECTION_KEYS,
    get_site_meta,
    get_site_state,
    save_section,
    save_site_state,
)
from artmarket.errors import ValidationError
from artmarket.models import SITE_STATE_ID, ActivityEvent, SiteState, db
from artmarket.tests.support import admin_token, auth_headers, signup


def test_startup_seeds_site_state(app):
    with app.app_context():
        row = db.session.get(SiteState, SITE_STATE_ID)
        assert row is not None
        state = get_site_state()
        assert set(SECTION_KEYS) <= set(state["sections"])
        assert len(state["products"]) == 3


def test_missing_row_is_recreated_on_read(app):
    with app.app_context():
        SiteState.query.delete()
        db.session.commit()
        state = get_site_state()
        assert state["sections"]["home"]["welcome"] == "Welcome to"
        assert db.session.get(SiteState, SITE_STATE_ID) is not None


def test_corrupt_json_falls_back_to_defaults(app):
    with app.app_context():
        row = db.session.get(SiteState, SITE_STATE_ID)
        row.sections_json = "{not json"
        row.products_json = '{"oops": true}'
        db.session.commit()
        state = get_site_state()
        assert isinstance(state["sections"]["footer"], dict)
        assert [item["id"] for item in state["products"]] == [
            "prod-praying-girl",
            "prod-arch-cabinet",
            "prod-hajj-arts",
        ]


def test_non_object_section_is_replaced_with_default(app):
    with app.app_context():
        row = db.session.get(SiteState, SITE_STATE_ID)
        row.sections_json = '{"about": "broken", "home": {"welcome": "Hello"}}'
        db.session.commit()
        sections = get_site_state()["sections"]
        assert sections["about"]["title"] == "About the Gallery"
        assert sections["home"]["welcome"] == "Hello"
        assert sections["home"]["tagline"]


def test_save_bumps_revision_and_normalizes_products(app):
    with app.app_context():
        before = get_site_meta()["revision"]
        saved = save_site_state({"sections": {}, "products": [{"id": "x-1", "gallery_type": "furniture"}]}, None)
        assert saved["products"][0]["gallery_type"] == "designs"
        assert get_site_meta()["revision"] == before + 1
        assert get_site_state()["products"][0]["id"] == "x-1"


def test_empty_catalog_stays_empty(app):
    with app.app_context():
        save_site_state({"sections": {}, "products": []}, None)
        assert get_site_state()["products"] == []


def test_save_section_validates_key_and_content(app):
    with app.app_context():
        with pytest.raises(ValidationError):
            save_section("sidebar", {"title": "x"})
        with pytest.raises(ValidationError):
            save_section("about", ["not", "an", "object"])
        saved = save_section("About", {"title": "Our Story"})
        assert saved["sections"]["about"]["title"] == "Our Story"
        assert saved["sections"]["about"]["lead"]


def test_content_endpoints(client):
    public = client.get("/api/public/content")
    assert public.status_code == 200
    assert "home" in public.get_json()["sections"]

    token = admin_token(client)
    response = client.put(
        "/api/content/sections/contact",
        json={"content": {"title": "Write to us"}},
        headers=auth_headers(token),
    )
    assert response.status_code == 200
    assert response.get_json()["content"]["title"] == "Write to us"

    bad = client.put("/api/content/sections/nope", json={"content": {}}, headers=auth_headers(token))
    assert bad.status_code == 400
    assert bad.get_json()["error"] == "Unknown section key."

    _, vendor = signup(client, "vendor")
    current = client.get("/api/content/current", headers=auth_headers(vendor))
    assert current.status_code == 200
    assert current.get_json()["state"] == {"sections": {}, "products": []}

    denied = client.put("/api/content/current", json={"products": []}, headers=auth_headers(vendor))
    assert denied.status_code == 403

    template = client.get("/api/content/template", headers=auth_headers(vendor))
    assert template.get_json()["template"]["target"] == "vendor_products"


def test_duplicate_product_ids_are_rejected(app, client):
    with app.app_context():
        before = get_site_meta()["revision"]
        with pytest.raises(ValidationError, match="Duplicate product id: a."):
            save_site_state({"sections": {}, "products": [{"id": "a", "name": "One"}, {"id": "a", "name": "Two"}]}, None)
        assert get_site_meta()["revision"] == before

    token = admin_token(client)
    response = client.put(
        "/api/content/current",
        json={"products": [{"id": "dup", "name": "One"}, {"id": "dup", "name": "Two"}]},
        headers=auth_headers(token),
    )
    assert response.status_code == 400
    assert response.get_json()["error"] == "Duplicate product id: dup."
    with app.app_context():
        assert [product["id"] for product in get_site_state()["products"]].count("dup") == 0


def test_section_save_joins_the_callers_transaction(app, client):
    with app.app_context():
        save_section("footer", {"brand": "Pending"}, None, commit=False)
        db.session.rollback()
        assert get_site_state()["sections"]["footer"]["brand"] == "Art Market"

    token = admin_token(client)
    client.put("/api/content/sections/footer", json={"content": {"brand": "Saved"}}, headers=auth_headers(token))
    with app.app_context():
        assert get_site_state()["sections"]["footer"]["brand"] == "Saved"
        event = ActivityEvent.query.filter_by(domain="content", entity_type="site_section").one()
        assert event.entity_id == "footer"
