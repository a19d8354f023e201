# Overview: Request identity decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


def _is_authenticated() -> bool:
    return bool(getattr(g, "user_id", None))


def require_auth(f):
    """
    Require an identified caller.

    Identity comes from the upstream identity provider as request headers:
    - X-User-Id: opaque user identifier (required)
    - X-User-Role: role name, e.g. "admin" or "operator" (optional)

    Sets g.user_id and g.user_role for the route.

    Returns 401 if no user id is present.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
        if not user_id:
            return jsonify({"error": "Authentication required", "code": "unauthenticated"}), 401

        g.user_id = user_id
        g.user_role = (request.headers.get(USER_ROLE_HEADER) or "").strip().lower() or None
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the caller's role to be one of `roles`.

    Must be applied under @require_auth.
    """
    allowed = {role.lower() for role in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "code": "unauthenticated"}), 401
            if g.user_role not in allowed:
                return jsonify({
                    "error": f"Requires role: {', '.join(sorted(allowed))}",
                    "code": "forbidden",
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
