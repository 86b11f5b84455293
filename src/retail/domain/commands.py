"""
Commands du domaine.

Les commands représentent des intentions : quelque chose que
le système doit faire. Contrairement aux events (faits passés),
les commands sont des demandes qui peuvent échouer.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional


class Command:
    """Classe de base pour toutes les commands."""
    pass


@dataclass(frozen=True)
class LineRequest:
    """Une ligne demandée : un produit et une quantité."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class CreateDelivery(Command):
    """Enregistre une livraison et décrémente le stock des produits livrés."""

    client_id: int
    items: tuple[LineRequest, ...]
    notes: Optional[str] = None


@dataclass(frozen=True)
class CreateOrder(Command):
    client_id: int
    items: tuple[LineRequest, ...]


@dataclass(frozen=True)
class CreateProduct(Command):
    code: str
    name: str
    price: Decimal
    category: str
    stock: int = 0
    description: Optional[str] = None
    brand: Optional[str] = None


@dataclass(frozen=True)
class UpdateProduct(Command):
    product_id: int
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteProduct(Command):
    product_id: int


@dataclass(frozen=True)
class SetStock(Command):
    """Fixe le stock d'un produit à une valeur absolue."""

    product_id: int
    stock: int


@dataclass(frozen=True)
class AdjustStock(Command):
    """Ajoute (ou retire, si négatif) une quantité au stock d'un produit."""

    product_id: int
    adjustment: int


@dataclass(frozen=True)
class CreateClient(Command):
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class UpdateClient(Command):
    client_id: int
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteClient(Command):
    client_id: int


@dataclass(frozen=True)
class RegisterUser(Command):
    username: str
    email: str
    password: str
    role: str = "staff"
