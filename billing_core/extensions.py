from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()

# Key: calling service identity when the relay sends one; otherwise client IP
def _rate_limit_key():
    from flask import request
    client = (request.headers.get("x-client-info") or "").strip()
    if client:
        return f"client:{client[:64]}"
    return get_remote_address()

# Storage is configured in create_app() via limiter.init_app(...).
limiter = Limiter(key_func=_rate_limit_key)
