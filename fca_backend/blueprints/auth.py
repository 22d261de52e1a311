"""Bearer token authentication for the sync API."""
from flask import request, g
import hashlib
import logging
import secrets
from sqlalchemy import select
from ..models import db, ApiToken, User
from ..services.ownership import CallerIdentity
from ..utils import api_error
from fca_shared.models import now

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def hash_token(token):
    """Tokens are stored as their SHA-256 hex digest, never in plain text."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def issue_token(user):
    """Create a new API token for a user. Returns the plain token; the caller commits."""
    token = secrets.token_urlsafe(TOKEN_BYTES)
    db.session.add(ApiToken(token_hash=hash_token(token), user_id=user.id))
    return token


def caller_for(user):
    return CallerIdentity(user_id=user.id, company=user.company, role=user.role, name=user.name)


def init_auth(app):
    """Initialize authentication for the Flask app."""
    @app.before_request
    def check_auth():
        if not request.path.startswith('/api'):
            return

        auth_header = request.headers.get('Authorization', '')
        if auth_header.startswith('Bearer '):
            token = auth_header[len('Bearer '):].strip()
            if token:
                api_token = db.session.execute(
                    select(ApiToken).where(ApiToken.token_hash == hash_token(token))
                ).scalars().first()
                if api_token is not None:
                    user = db.session.get(User, api_token.user_id)
                    if user is not None:
                        api_token.last_used_at = now()
                        db.session.commit()
                        g.user = user
                        g.caller = caller_for(user)
                        return  # Authenticated

        return api_error('Authentication required', 401, details={'path': request.path})
