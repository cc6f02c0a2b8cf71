# Overview: Request decorators for API routes (identity and role gating).

from functools import wraps
from flask import current_app, request, jsonify, g
from werkzeug.utils import import_string

from .identity import ROLES


def _identity_provider():
    provider = current_app.config["IDENTITY_PROVIDER"]
    if isinstance(provider, str):
        provider = import_string(provider)
    return provider


def _is_authenticated() -> bool:
    return getattr(g, "identity", None) is not None


def require_auth(f):
    """
    Require an identity from the configured provider.

    Sets g.identity (stockpos.identity.Identity). Returns 401 when the
    provider cannot resolve the caller.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = _identity_provider()(request)
        if identity is None:
            return jsonify({"error": "Authentication required"}), 401

        g.identity = identity
        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """
    Require a specific role. Must be stacked under @require_auth.
    """
    if role not in ROLES:
        raise ValueError(f"unknown role: {role}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.identity.role != role:
                current_app.logger.info(
                    "Role %s required for %s %s; user %s has %s",
                    role, request.method, request.path, g.identity.user_id, g.identity.role,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_role": role,
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
