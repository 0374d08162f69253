import os

class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")

    # Database (env in prod; dev/test may use default)
    try:
        from dotenv import dotenv_values
        _ENV_FALLBACK = dotenv_values(".env")
    except Exception:
        _ENV_FALLBACK = {}
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None
    MANAGE_SUBSCRIPTION_RATE_LIMIT = os.getenv("MANAGE_SUBSCRIPTION_RATE_LIMIT", "600/minute")

    # --- CORS (webhook relay + admin tooling call the function endpoint) ---
    CORS_ALLOW_ORIGIN = os.getenv("CORS_ALLOW_ORIGIN", "*")
    CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"

    # --- Subscriptions ---
    EXTERNAL_ID_MAX_LENGTH = int(os.getenv("EXTERNAL_ID_MAX_LENGTH", "100"))
    DEFAULT_PLAN_INTERVAL = os.getenv("DEFAULT_PLAN_INTERVAL", "monthly")
    DEFAULT_PAYMENT_METHOD = os.getenv("DEFAULT_PAYMENT_METHOD", "credit_card")
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "BRL")

    # Persist failed side effects to effect_failure_logs for `flask effects retry`
    RECORD_EFFECT_FAILURES = (os.getenv("RECORD_EFFECT_FAILURES", "true").lower() == "true")

class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")

class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # Presence is enforced by create_app() at boot, not at import time
    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")

class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    RATELIMIT_ENABLED = False

_ENV_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}

def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
