# auth.py
from functools import wraps

from flask import Blueprint, jsonify, request
from werkzeug.security import check_password_hash
from flask_login import login_user, logout_user, login_required, current_user
from models import User

auth = Blueprint("auth", __name__, url_prefix="/auth")


def operator_id():
    # passed through to records as created_by, never interpreted
    return str(current_user.id) if current_user.is_authenticated else None


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if current_user.role != "admin":
            return jsonify({"error": "Permission denied."}), 403
        return view(*args, **kwargs)
    return wrapped


@auth.route("/login", methods=["POST"])
def login():
    if not request.is_json:
        return jsonify({"error": "Invalid request. JSON expected."}), 400
    payload = request.get_json()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        return jsonify({"error": "Invalid email or password"}), 401
    login_user(user, remember=bool(payload.get("remember")))
    return jsonify({"id": user.id, "name": user.name, "role": user.role}), 200


@auth.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Logged out."}), 200


@auth.route("/me")
@login_required
def me():
    return jsonify({"id": current_user.id, "name": current_user.name,
                    "email": current_user.email, "role": current_user.role})
