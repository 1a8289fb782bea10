"""
Session cookie hooks: every request is bound to a visitor session
"""
from flask import g, request

from doctranslate.config import COOKIE_SECURE_DEFAULT, SESSION_COOKIE_NAME


def _is_secure_request() -> bool:
    if request.is_secure:
        return True
    return request.headers.get('X-Forwarded-Proto', '').lower() == 'https'


# Health checks and CORS preflights must not mint sessions
SESSIONLESS_ENDPOINTS = ('translation.health_check',)


def configure_session_middleware(app, session_store):
    """
    Register before/after request hooks on ``app``.

    before_request resolves the cookie into ``g.session``; after_request
    (re)issues the cookie so its lifetime slides with activity.
    """

    @app.before_request
    def bind_session():
        if request.method == 'OPTIONS' or request.endpoint in SESSIONLESS_ENDPOINTS:
            g.session = None
            return
        g.session = session_store.resolve(request.cookies.get(SESSION_COOKIE_NAME))

    @app.after_request
    def issue_session_cookie(response):
        session = g.get('session')
        if session is None or g.get('session_deleted'):
            return response
        response.set_cookie(
            SESSION_COOKIE_NAME,
            session.session_id,
            max_age=int(session_store.timeout_seconds),
            path='/',
            httponly=True,
            secure=COOKIE_SECURE_DEFAULT or _is_secure_request(),
            samesite='Lax',
        )
        return response
