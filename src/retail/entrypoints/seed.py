"""
Point d'entrée `retail-seed` : données initiales.

Crée les tables si besoin, un administrateur et quelques produits
d'exemple. Tout passe par le message bus, comme pour l'API ; une
ressource déjà présente (Conflict) est laissée telle quelle, donc le
seed peut être relancé.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from retail import config
from retail.adapters import orm
from retail.domain import commands, errors
from retail.logging_config import setup_logging
from retail.service_layer import bootstrap, messagebus, unit_of_work

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = (
    commands.CreateProduct(
        code="FOOT-NIKE-5",
        name="Ballon de football Nike",
        description="Ballon officiel de championnat, taille 5",
        price=Decimal("49.99"),
        category="Football",
        stock=10,
        brand="Nike",
    ),
    commands.CreateProduct(
        code="RUN-ADIDAS-TS",
        name="T-shirt de course Adidas",
        description="T-shirt léger pour la course à pied",
        price=Decimal("29.99"),
        category="Running",
        stock=20,
        brand="Adidas",
    ),
    commands.CreateProduct(
        code="TENNIS-WILSON-PRO",
        name="Raquette de tennis Wilson",
        description="Raquette professionnelle, cadre en carbone",
        price=Decimal("120.00"),
        category="Tennis",
        stock=5,
        brand="Wilson",
    ),
)


def seed(bus: messagebus.MessageBus, admin: dict | None = None) -> None:
    admin = admin or config.get_seed_admin()
    try:
        bus.handle(commands.RegisterUser(role="admin", **admin))
        logger.info("Administrateur créé : %s", admin["username"])
    except errors.Conflict:
        logger.info("Administrateur déjà présent : %s", admin["username"])

    for cmd in SAMPLE_PRODUCTS:
        try:
            bus.handle(cmd)
            logger.info("Produit d'exemple créé : %s", cmd.code)
        except errors.Conflict:
            logger.info("Produit d'exemple déjà présent : %s", cmd.code)


def main() -> None:
    setup_logging()
    orm.start_mappers()
    session_factory = unit_of_work.create_session_factory()
    orm.metadata.create_all(session_factory.kw["bind"])
    seed(bootstrap.bootstrap(start_orm=False, session_factory=session_factory))
    logger.info("Données initiales en place")


if __name__ == "__main__":
    main()
