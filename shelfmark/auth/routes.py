from flask import g, jsonify, request
from flask_login import login_required, login_user, logout_user

from shelfmark.auth import auth_bp
from shelfmark.extensions import db
from shelfmark.models import ApiToken, User
from shelfmark.services.security import api_auth_required


def _credentials():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    return payload, username, password


def _check_credentials(username: str, password: str):
    user = User.query.filter_by(username=username).first()
    if not user or not user.is_active or not user.check_password(password):
        return None
    return user


@auth_bp.route("/bootstrap-admin", methods=["POST"])
def bootstrap_admin():
    if User.query.count() > 0:
        return jsonify({"error": "bootstrap already completed"}), 409

    _, username, password = _credentials()
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400

    admin = User(username=username, is_admin=True, is_active=True)
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    return jsonify({"status": "created", "user_id": admin.id}), 201


@auth_bp.route("/users", methods=["POST"])
@api_auth_required(admin=True)
def create_user():
    payload, username, password = _credentials()
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({"error": "username already exists"}), 409

    user = User(username=username, is_admin=bool(payload.get("is_admin")))
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return jsonify({"status": "created", "user_id": user.id}), 201


@auth_bp.route("/token", methods=["POST"])
def create_token():
    payload, username, password = _credentials()
    token_name = (payload.get("token_name") or "Shelfmark API Token").strip()

    user = _check_credentials(username, password)
    if not user:
        return jsonify({"error": "invalid credentials"}), 401

    token, token_hash = ApiToken.issue_token()
    db.session.add(ApiToken(user_id=user.id, name=token_name, token_hash=token_hash))
    db.session.commit()
    return jsonify({"token": token, "token_name": token_name, "user_id": user.id})


@auth_bp.route("/login", methods=["POST"])
def login():
    _, username, password = _credentials()
    user = _check_credentials(username, password)
    if not user:
        return jsonify({"error": "invalid credentials"}), 401
    login_user(user)
    return jsonify({"status": "signed_in", "user_id": user.id})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"status": "signed_out"})


@auth_bp.route("/me")
@api_auth_required()
def whoami():
    user = g.api_user
    return jsonify({"user_id": user.id, "username": user.username})
