"""
Configuration partagée pour les tests.

Le mapping ORM est démarré une seule fois pour toute la session de tests.
Les fabriques de sessions utilisent SQLite : en mémoire pour les tests
séquentiels, sur fichier pour les tests de concurrence (une connexion
par thread).
"""

import pytest

from retail.adapters import orm
from retail.adapters.tokens import JwtTokens
from retail.service_layer import bootstrap, unit_of_work


@pytest.fixture(scope="session", autouse=True)
def mappers():
    """Démarre le mapping ORM une fois pour toute la session."""
    orm.start_mappers()


@pytest.fixture
def session_factory():
    """Base SQLite en mémoire avec toutes les tables."""
    factory = unit_of_work.create_session_factory("sqlite:///:memory:")
    engine = factory.kw["bind"]
    orm.metadata.create_all(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """Base SQLite sur fichier, partageable entre plusieurs threads."""
    factory = unit_of_work.create_session_factory(
        f"sqlite:///{tmp_path / 'retail.db'}", busy_timeout=10
    )
    engine = factory.kw["bind"]
    orm.metadata.create_all(engine)
    yield factory
    engine.dispose()


def _bus(session_factory):
    return bootstrap.bootstrap(
        start_orm=False,
        session_factory=session_factory,
        tokens_adapter=JwtTokens(
            access_secret="test-access-secret-0123456789abcdef",
            refresh_secret="test-refresh-secret-0123456789abcdef",
        ),
    )


@pytest.fixture
def sqlite_bus(session_factory):
    """Message bus branché sur la base SQLite en mémoire."""
    return _bus(session_factory)


@pytest.fixture
def file_bus(file_session_factory):
    """Message bus branché sur la base SQLite sur fichier."""
    return _bus(file_session_factory)
