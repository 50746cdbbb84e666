import uuid

from artmarket import create_app
from artmarket.models import AuthRateLimitBucket, db

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Admin123!"
DEFAULT_PASSWORD = "password123"


def build_test_app(tmp_path, monkeypatch, overrides=None):
    db_path = tmp_path / f"artmarket_test_{uuid.uuid4().hex[:8]}.db"

    monkeypatch.setenv("SEED_ADMIN_PASSWORD", ADMIN_PASSWORD)

    config = {
        "TESTING": True,
        "SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SEED_ADMIN_EMAIL": ADMIN_EMAIL,
        "LOG_JSON": False,
    }
    if overrides:
        config.update(overrides)

    app = create_app(config)
    with app.app_context():
        AuthRateLimitBucket.query.delete()
        db.session.commit()
    return app


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def signin(client, email, password, path="/api/auth/signin"):
    response = client.post(path, json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    client.delete_cookie("session_token")
    return response.get_json()["token"]


def admin_token(client):
    return signin(client, ADMIN_EMAIL, ADMIN_PASSWORD)


def signup(client, role="vendor", name=None, email=None, password=DEFAULT_PASSWORD):
    path = "/api/auth/user/signup" if role == "user" else "/api/auth/vendor/signup"
    name = name or f"{role.title()} {uuid.uuid4().hex[:6]}"
    email = email or f"{role}-{uuid.uuid4().hex[:8]}@example.com"
    response = client.post(path, json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.get_json()
    payload = response.get_json()
    client.delete_cookie("session_token")
    return payload["user"], payload["token"]


def create_admin_product(client, token, **fields):
    product = {"id": f"prod-{uuid.uuid4().hex[:8]}", "name": "Admin Product", "status": "active"}
    product.update(fields)
    response = client.post("/api/products", json={"product": product}, headers=auth_headers(token))
    assert response.status_code == 201, response.get_json()
    return response.get_json()["product"]
