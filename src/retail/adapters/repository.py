"""
Pattern Repository.

Le repository fournit une abstraction sur la couche de persistance,
avec une interface de type collection (add, get, delete).

Le pattern Template Method est utilisé : les méthodes publiques
gèrent le tracking via `seen`, puis délèguent aux méthodes
abstraites préfixées _ que les sous-classes implémentent.
"""

from __future__ import annotations

import abc
from typing import Any, Iterable

from sqlalchemy.orm import Session

from retail.domain import model


class AbstractRepository(abc.ABC):
    """
    Interface commune à tous les repositories.

    `seen` trace les entités consultées pendant la transaction, ce qui
    permet au Unit of Work de collecter les événements qu'elles émettent.
    """

    def __init__(self) -> None:
        self.seen: set[Any] = set()

    def add(self, entity: Any) -> None:
        self._add(entity)
        self.seen.add(entity)

    def get(self, id: int) -> Any | None:
        entity = self._get(id)
        if entity is not None:
            self.seen.add(entity)
        return entity

    def delete(self, entity: Any) -> None:
        self._delete(entity)
        self.seen.discard(entity)

    @abc.abstractmethod
    def _add(self, entity: Any) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, id: int) -> Any | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _delete(self, entity: Any) -> None:
        raise NotImplementedError


class AbstractProductRepository(AbstractRepository):

    def get_by_code(self, code: str) -> model.Product | None:
        product = self._get_by_code(code)
        if product is not None:
            self.seen.add(product)
        return product

    def lock(self, product_ids: Iterable[int]) -> list[model.Product]:
        """
        Charge les produits demandés en posant un verrou d'écriture.

        Les verrous sont pris par id croissant, quel que soit l'ordre
        de la demande, pour éviter les interblocages entre deux
        transactions qui se partagent des produits. Les ids inconnus
        sont simplement absents du résultat.
        """
        products = self._lock(sorted(set(product_ids)))
        self.seen.update(products)
        return products

    @abc.abstractmethod
    def _get_by_code(self, code: str) -> model.Product | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _lock(self, product_ids: list[int]) -> list[model.Product]:
        raise NotImplementedError

    @abc.abstractmethod
    def is_referenced(self, product_id: int) -> bool:
        """Vrai si une ligne de livraison ou de commande pointe vers ce produit."""
        raise NotImplementedError


class AbstractClientRepository(AbstractRepository):

    @abc.abstractmethod
    def get_by_email(self, email: str) -> model.Client | None:
        raise NotImplementedError

    @abc.abstractmethod
    def has_history(self, client_id: int) -> bool:
        """Vrai si le client a au moins une livraison ou une commande."""
        raise NotImplementedError


class AbstractUserRepository(AbstractRepository):

    @abc.abstractmethod
    def get_by_email(self, email: str) -> model.User | None:
        raise NotImplementedError

    @abc.abstractmethod
    def get_by_username(self, username: str) -> model.User | None:
        raise NotImplementedError


# --- Implémentations SQLAlchemy ---


class SqlAlchemyRepository(AbstractRepository):
    """Base des repositories SQLAlchemy : `model_class` désigne l'entité gérée."""

    model_class: type

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, entity: Any) -> None:
        self.session.add(entity)

    def _get(self, id: int) -> Any | None:
        return self.session.get(self.model_class, id)

    def _delete(self, entity: Any) -> None:
        self.session.delete(entity)


class SqlAlchemyProductRepository(SqlAlchemyRepository, AbstractProductRepository):
    model_class = model.Product

    def _get_by_code(self, code: str) -> model.Product | None:
        return self.session.query(model.Product).filter_by(code=code).first()

    def _lock(self, product_ids: list[int]) -> list[model.Product]:
        # SELECT ... FOR UPDATE ; populate_existing relit le stock même si
        # le produit était déjà présent dans l'identity map de la session.
        return (
            self.session.query(model.Product)
            .filter(model.Product.id.in_(product_ids))
            .order_by(model.Product.id)
            .with_for_update()
            .populate_existing()
            .all()
        )

    def is_referenced(self, product_id: int) -> bool:
        for line_class in (model.DeliveryItem, model.OrderItem):
            if self.session.query(line_class).filter_by(product_id=product_id).first():
                return True
        return False


class SqlAlchemyClientRepository(SqlAlchemyRepository, AbstractClientRepository):
    model_class = model.Client

    def get_by_email(self, email: str) -> model.Client | None:
        return self.session.query(model.Client).filter_by(email=email).first()

    def has_history(self, client_id: int) -> bool:
        for document_class in (model.Delivery, model.Order):
            if self.session.query(document_class).filter_by(client_id=client_id).first():
                return True
        return False


class SqlAlchemyDeliveryRepository(SqlAlchemyRepository):
    model_class = model.Delivery


class SqlAlchemyOrderRepository(SqlAlchemyRepository):
    model_class = model.Order


class SqlAlchemyUserRepository(SqlAlchemyRepository, AbstractUserRepository):
    model_class = model.User

    def get_by_email(self, email: str) -> model.User | None:
        return self.session.query(model.User).filter_by(email=email).first()

    def get_by_username(self, username: str) -> model.User | None:
        return self.session.query(model.User).filter_by(username=username).first()
