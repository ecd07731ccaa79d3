import pytest

from shelfmark import create_app
from shelfmark.config import TestConfig
from shelfmark.extensions import db
from shelfmark.models import User


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


def create_user(username: str, password: str, is_admin=False):
    user = User(username=username, is_admin=is_admin, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def issue_token(client, username: str, password: str):
    response = client.post(
        "/api/v1/auth/token",
        json={"username": username, "password": password, "token_name": "pytest"},
    )
    assert response.status_code == 200
    return response.get_json()["token"]


@pytest.fixture
def auth(app, client):
    with app.app_context():
        create_user("owner", "secret")
    token = issue_token(client, "owner", "secret")
    return {"Authorization": f"Bearer {token}"}
