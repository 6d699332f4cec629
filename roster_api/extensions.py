import os
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

SERVER_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_recycle": 270,
    "pool_size": 5,
    "max_overflow": 2,
    "pool_timeout": 30,
}


def normalize_db_url(url: str) -> str:
    """Point bare postgres URLs at the psycopg 3 driver the roster service ships with."""
    if not url:
        return url
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def init_db(app):
    url = os.getenv("DATABASE_URL", app.config.get("SQLALCHEMY_DATABASE_URI", "")) or ""
    app.config["SQLALCHEMY_DATABASE_URI"] = normalize_db_url(url)

    # pool sizing applies to server databases only
    if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", dict(SERVER_POOL_OPTIONS))

    db.init_app(app)
