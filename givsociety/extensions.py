"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # per-route limits only
    storage_uri="memory://",
)


@login_manager.request_loader
def load_user_from_request(request):
    """Resolve the donor from an ``Authorization: Bearer <jwt>`` header.

    Missing, malformed, expired or revoked-user tokens all resolve to the
    anonymous user; unauthenticated checkout is a valid (anonymous) donation.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    from givsociety.models.user import User
    from givsociety.services.token_service import decode_access_token

    payload = decode_access_token(auth_header[len("Bearer "):].strip())
    if payload is None:
        return None

    try:
        user_id = int(payload.get("userId"))
    except (TypeError, ValueError):
        return None

    return User.query.filter_by(id=user_id, deleted_at=None).first()


@login_manager.unauthorized_handler
def unauthorized():
    """JSON API: answer 401 instead of redirecting to a login page."""
    return jsonify({"success": False, "error": "Access token is required"}), 401
