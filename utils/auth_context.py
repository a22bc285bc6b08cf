from functools import wraps
from flask import current_app, g, jsonify, request

from services.cancellation import Actor

def load_current_user():
    # Identity is issued upstream; trust the gateway headers
    header = current_app.config.get("IDENTITY_HEADER", "X-User-Id")
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        g.user = None
        return
    roles_header = current_app.config.get("ROLES_HEADER", "X-User-Roles")
    roles = {r.strip().upper() for r in (request.headers.get(roles_header) or "").split(",") if r.strip()}
    g.user = Actor(user_id=user_id[:64], roles=frozenset(roles))

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
