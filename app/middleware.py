"""Middleware for the authenticated agent context."""
from functools import wraps
from flask import g, request, current_app
import jwt

from app.exceptions import UnauthorizedError


def load_agent_context():
    """
    Load the calling agent into g (Flask's per-request global).

    Called before each request. Tokens are issued by the identity service;
    here they are only verified. Sets g.agent_id and g.user_role when the
    bearer token is valid, leaves both None otherwise.
    """
    g.agent_id = None
    g.user_role = None
    g.auth_error = None

    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        g.auth_error = 'No token provided'
        return

    try:
        payload = jwt.decode(
            token.strip(),
            current_app.config['JWT_SECRET'],
            algorithms=[current_app.config.get('JWT_ALGORITHM', 'HS256')]
        )
    except jwt.ExpiredSignatureError:
        g.auth_error = 'Token expired'
        return
    except jwt.InvalidTokenError:
        g.auth_error = 'Invalid token'
        return

    agent_id = payload.get('userId') or payload.get('sub')
    if agent_id is None or not str(agent_id).strip():
        g.auth_error = 'Invalid token'
        return

    g.agent_id = str(agent_id)
    g.user_role = payload.get('role') or 'agent'


def require_agent(f):
    """
    Decorator: Require an authenticated agent.

    Raises UnauthorizedError (401) when no valid token came with the request.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('agent_id') is None:
            raise UnauthorizedError(g.get('auth_error') or 'No token provided')
        return f(*args, **kwargs)
    return decorated_function

