"""
Configuration lue depuis les variables d'environnement.

Les valeurs par défaut conviennent au développement local (SQLite).
En production, DATABASE_URL pointe vers PostgreSQL et les secrets
JWT doivent être fournis.
"""

import logging
import os
from datetime import timedelta

logger = logging.getLogger(__name__)

DEFAULT_ACCESS_SECRET = "supersecret"
DEFAULT_REFRESH_SECRET = "superrefresh"


def get_database_uri() -> str:
    return os.environ.get("DATABASE_URL", "sqlite:///retail.db")


def get_sqlite_busy_timeout() -> float:
    """Secondes d'attente d'un écrivain SQLite bloqué avant « database is locked »."""
    return float(os.environ.get("RETAIL_SQLITE_BUSY_TIMEOUT", "5"))


def get_lock_timeout_ms() -> int:
    """Attente maximale d'un verrou de ligne (PostgreSQL), en millisecondes."""
    return int(os.environ.get("RETAIL_LOCK_TIMEOUT_MS", "5000"))


def get_jwt_settings() -> dict:
    """
    Secrets de signature des jetons.

    Sans variable d'environnement, les secrets de développement sont
    utilisés et un avertissement est journalisé.
    """
    access_secret = os.environ.get("JWT_ACCESS_SECRET", os.environ.get("JWT_SECRET"))
    refresh_secret = os.environ.get("JWT_REFRESH_SECRET", os.environ.get("REFRESH_SECRET"))
    if access_secret is None:
        logger.warning("JWT_ACCESS_SECRET absent : secret de développement utilisé")
        access_secret = DEFAULT_ACCESS_SECRET
    if refresh_secret is None:
        logger.warning("JWT_REFRESH_SECRET absent : secret de développement utilisé")
        refresh_secret = DEFAULT_REFRESH_SECRET
    return dict(
        access_secret=access_secret,
        refresh_secret=refresh_secret,
        access_ttl=timedelta(hours=1),
        refresh_ttl=timedelta(days=7),
    )


def get_log_level() -> str:
    return os.environ.get("LOG_LEVEL", "INFO").upper()


def get_api_bind() -> tuple[str, int]:
    """Adresse d'écoute du serveur de développement."""
    return os.environ.get("API_HOST", "127.0.0.1"), int(os.environ.get("API_PORT", "4000"))


def get_seed_admin() -> dict:
    """Compte administrateur initial créé par `retail-seed`."""
    password = os.environ.get("RETAIL_ADMIN_PASSWORD")
    if password is None:
        logger.warning("RETAIL_ADMIN_PASSWORD absent : mot de passe de développement utilisé")
        password = "Admin1234!"
    return dict(
        username=os.environ.get("RETAIL_ADMIN_USERNAME", "admin"),
        email=os.environ.get("RETAIL_ADMIN_EMAIL", "admin@example.com"),
        password=password,
    )
