"""
Pattern Unit of Work.

Le Unit of Work (UoW) gère la notion de transaction atomique.
Il coordonne l'écriture en base de données et la collecte
des événements émis par les entités au cours de la transaction.

Le UoW agit comme un context manager :
    with uow:
        # ... opérations sur les repositories ...
        uow.commit()

Sans commit(), tout est annulé à la sortie du bloc.
"""

from __future__ import annotations

import abc
import logging
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from retail import config
from retail.adapters import repository
from retail.domain import errors, events

logger = logging.getLogger(__name__)

# SQLSTATE PostgreSQL « lock_not_available » (lock_timeout dépassé).
PG_LOCK_NOT_AVAILABLE = "55P03"

# Option d'exécution lue par le hook BEGIN de SQLite (IMMEDIATE par défaut).
SQLITE_BEGIN_OPTION = "retail_sqlite_begin"


class AbstractUnitOfWork(abc.ABC):
    """
    Interface abstraite du Unit of Work.

    Fournit un repository par entité et gère commit/rollback.
    Le rollback est automatique si commit() n'est pas appelé
    (grâce au __exit__ du context manager).
    """

    clients: repository.AbstractClientRepository
    products: repository.AbstractProductRepository
    deliveries: repository.AbstractRepository
    orders: repository.AbstractRepository
    users: repository.AbstractUserRepository

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args: object) -> None:
        self.rollback()

    def commit(self) -> None:
        self._commit()

    def collect_new_events(self) -> Iterator[events.Event]:
        """Vide la liste d'événements des produits vus pendant la transaction."""
        for product in self.products.seen:
            while product.events:
                yield product.events.pop(0)

    @abc.abstractmethod
    def _commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


def _is_lock_timeout(exc: OperationalError) -> bool:
    if getattr(exc.orig, "pgcode", None) == PG_LOCK_NOT_AVAILABLE:
        return True
    # sqlite3 ne fournit pas de code structuré pour SQLITE_BUSY
    return "database is locked" in str(exc.orig)


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Implémentation concrète du UoW avec SQLAlchemy.

    Crée une session à l'entrée du context manager et la ferme à la
    sortie. Les erreurs du store sont traduites en erreurs typées :
    violation de contrainte -> Conflict, attente de verrou -> LockTimeout.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        lock_timeout_ms: int | None = None,
        read_only: bool = False,
    ):
        self.session_factory = session_factory
        self.lock_timeout_ms = lock_timeout_ms
        self.read_only = read_only

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self.session: Session = self.session_factory()
        self.clients = repository.SqlAlchemyClientRepository(self.session)
        self.products = repository.SqlAlchemyProductRepository(self.session)
        self.deliveries = repository.SqlAlchemyDeliveryRepository(self.session)
        self.orders = repository.SqlAlchemyOrderRepository(self.session)
        self.users = repository.SqlAlchemyUserRepository(self.session)
        dialect = self.session.get_bind().dialect.name
        if self.read_only and dialect == "sqlite":
            self.session.connection(execution_options={SQLITE_BEGIN_OPTION: "DEFERRED"})
        if self.lock_timeout_ms and dialect == "postgresql":
            self.session.execute(text(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}"))
        return super().__enter__()

    def __exit__(self, exc_type, exc, tb) -> None:
        super().__exit__(exc_type, exc, tb)
        self.session.close()
        if isinstance(exc, IntegrityError):
            logger.info("Violation de contrainte : %s", exc.orig)
            raise errors.Conflict(
                "La ressource existe déjà ou est encore référencée", detail=str(exc.orig)
            ) from exc
        if isinstance(exc, OperationalError) and _is_lock_timeout(exc):
            logger.warning("Délai d'attente de verrou dépassé : %s", exc.orig)
            raise errors.LockTimeout(
                "Ressource verrouillée par une autre transaction, réessayez plus tard"
            ) from exc

    def _commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


def _install_sqlite_pragmas(engine: Engine) -> None:
    """
    SQLite ignore FOR UPDATE : chaque transaction démarre donc par
    BEGIN IMMEDIATE, ce qui sérialise les écrivains au niveau de la base.
    Un écrivain en attente bloque jusqu'au busy timeout.

    Les Unit of Work en lecture seule démarrent en BEGIN DEFERRED :
    ils lisent pendant qu'un écrivain détient le verrou réservé.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite ne doit plus émettre son propre BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        mode = conn.get_execution_options().get(SQLITE_BEGIN_OPTION, "IMMEDIATE")
        conn.exec_driver_sql(f"BEGIN {mode}")


def create_session_factory(
    database_uri: str | None = None,
    busy_timeout: float | None = None,
) -> sessionmaker:
    """Construit l'engine et la fabrique de sessions, une fois au démarrage."""
    database_uri = database_uri or config.get_database_uri()
    if database_uri.startswith("sqlite"):
        if busy_timeout is None:
            busy_timeout = config.get_sqlite_busy_timeout()
        engine = create_engine(
            database_uri,
            connect_args={"timeout": busy_timeout, "check_same_thread": False},
        )
        _install_sqlite_pragmas(engine)
    else:
        # READ COMMITTED + FOR UPDATE : la ligne verrouillée est relue
        # dans sa dernière version validée.
        engine = create_engine(database_uri, isolation_level="READ COMMITTED")
    logger.debug("Engine créé pour %s", engine.url.render_as_string(hide_password=True))
    # Après le commit, les entités restent lisibles sans nouvelle transaction.
    return sessionmaker(bind=engine, expire_on_commit=False)
