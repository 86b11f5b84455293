"""
Bootstrap : assemblage de l'application (Composition Root).

Ce module construit le message bus avec toutes ses dépendances.
L'engine et la fabrique de sessions sont créés une seule fois, ici,
puis injectés ; aucun module ne garde de singleton de service.

C'est le seul endroit de l'application qui connaît les
implémentations concrètes de chaque abstraction.
"""

from __future__ import annotations

from typing import Any, Callable

from sqlalchemy.orm import sessionmaker

from retail import config
from retail.adapters import orm, tokens
from retail.domain import commands, events
from retail.service_layer import handlers, messagebus, unit_of_work


def bootstrap(
    start_orm: bool = True,
    uow_factory: Callable[[], unit_of_work.AbstractUnitOfWork] | None = None,
    session_factory: sessionmaker | None = None,
    read_uow_factory: Callable[[], unit_of_work.AbstractUnitOfWork] | None = None,
    tokens_adapter: tokens.AbstractTokens | None = None,
    **extra_dependencies: Any,
) -> messagebus.MessageBus:
    """
    Construit et retourne un MessageBus configuré.

    En production, utilise les implémentations concrètes.
    En test, on injecte des fakes via les paramètres.

    `read_uow_factory` fournit les Unit of Work des views : en lecture
    seule, ils ne prennent pas le verrou d'écriture.
    """
    if start_orm:
        orm.start_mappers()

    if uow_factory is None:
        if session_factory is None:
            session_factory = unit_of_work.create_session_factory()
        lock_timeout_ms = config.get_lock_timeout_ms()

        def sqlalchemy_uow() -> unit_of_work.AbstractUnitOfWork:
            return unit_of_work.SqlAlchemyUnitOfWork(session_factory, lock_timeout_ms)

        def sqlalchemy_read_uow() -> unit_of_work.AbstractUnitOfWork:
            return unit_of_work.SqlAlchemyUnitOfWork(session_factory, read_only=True)

        uow_factory = sqlalchemy_uow
        if read_uow_factory is None:
            read_uow_factory = sqlalchemy_read_uow

    if tokens_adapter is None:
        tokens_adapter = tokens.JwtTokens(**config.get_jwt_settings())

    dependencies: dict[str, Any] = {
        "tokens": tokens_adapter,
        "read_uow_factory": read_uow_factory or uow_factory,
        **extra_dependencies,
    }

    return messagebus.MessageBus(
        uow_factory=uow_factory,
        event_handlers=EVENT_HANDLERS,
        command_handlers=COMMAND_HANDLERS,
        dependencies=dependencies,
    )


# --- Routage des messages vers les handlers ---

EVENT_HANDLERS: dict[type[events.Event], list] = {
    events.StockDepleted: [handlers.log_stock_depleted],
}

COMMAND_HANDLERS: dict[type[commands.Command], Any] = {
    commands.CreateDelivery: handlers.create_delivery,
    commands.CreateOrder: handlers.create_order,
    commands.SetStock: handlers.set_stock,
    commands.AdjustStock: handlers.adjust_stock,
    commands.CreateProduct: handlers.create_product,
    commands.UpdateProduct: handlers.update_product,
    commands.DeleteProduct: handlers.delete_product,
    commands.CreateClient: handlers.create_client,
    commands.UpdateClient: handlers.update_client,
    commands.DeleteClient: handlers.delete_client,
    commands.RegisterUser: handlers.register_user,
}
