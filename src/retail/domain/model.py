"""
Modèle de domaine du commerce de détail.

Les entités ne connaissent pas SQLAlchemy : le mapping est fait
à part (classical mapping, voir adapters/orm.py).

Le stock d'un Produit est la ressource partagée du système.
Il ne descend jamais sous zéro ; seules les livraisons, les commandes
et les ajustements explicites le modifient.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from retail.domain import errors, events

ZERO = Decimal("0.00")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Client:
    """Client identifié par un email unique."""

    def __init__(
        self,
        name: str,
        email: str,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        id: Optional[int] = None,
    ):
        self.id = id
        self.name = name
        self.email = email
        self.phone = phone
        self.address = address
        self.created_at = _now()

    def __repr__(self) -> str:
        return f"<Client {self.email}>"


class Product:
    """
    Produit identifié par un code unique.

    `stock` est mutable mais toujours >= 0. Les retraits passent par
    `withdraw`, qui refuse de sur-vendre et émet StockDepleted quand
    le stock tombe à zéro.
    """

    def __init__(
        self,
        code: str,
        name: str,
        price: Decimal,
        category: str,
        stock: int = 0,
        description: Optional[str] = None,
        brand: Optional[str] = None,
        id: Optional[int] = None,
    ):
        self.id = id
        self.code = code
        self.name = name
        self.price = price
        self.category = category
        self.stock = stock
        self.description = description
        self.brand = brand
        self.created_at = _now()
        self.events: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<Product {self.code}>"

    def can_supply(self, quantity: int) -> bool:
        return self.stock >= quantity

    def withdraw(self, quantity: int) -> None:
        """Retire `quantity` unités du stock."""
        if quantity <= 0:
            raise errors.InvalidInput(
                f"Quantité invalide pour le produit {self.id} : {quantity}",
                product_id=self.id,
            )
        if not self.can_supply(quantity):
            raise errors.InsufficientStock(
                f"Stock insuffisant pour le produit {self.code} "
                f"(demandé : {quantity}, disponible : {self.stock})",
                product_id=self.id,
                code=self.code,
            )
        self.stock -= quantity
        if self.stock == 0:
            self.events.append(events.StockDepleted(product_id=self.id, code=self.code))

    def set_stock(self, stock: int) -> None:
        if stock < 0:
            raise errors.InvalidInput(
                f"Le stock ne peut pas être négatif : {stock}", product_id=self.id
            )
        self.stock = stock

    def adjust_stock(self, adjustment: int) -> None:
        """Ajustement relatif ; le résultat est ramené à zéro s'il devient négatif."""
        self.stock = max(0, self.stock + adjustment)


class LineItem:
    """
    Ligne d'une livraison ou d'une commande.

    Le prix unitaire est un instantané du prix du produit au moment
    de la transaction : une modification ultérieure du produit ne
    change pas les documents déjà créés.
    """

    def __init__(self, product: Product, quantity: int):
        self.product = product
        self.product_id = product.id
        self.quantity = quantity
        self.unit_price = product.price
        self.subtotal = product.price * quantity

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.product_id} x{self.quantity}>"

    def increase(self, quantity: int) -> None:
        self.quantity += quantity
        self.subtotal = self.unit_price * self.quantity


class DeliveryItem(LineItem):
    pass


class OrderItem(LineItem):
    pass


def _sum_subtotals(items: list[LineItem]) -> Decimal:
    return sum((item.subtotal for item in items), ZERO)


class Delivery:
    """
    Livraison : agrégat créé en une seule fois avec ses lignes.

    Le total vaut toujours la somme des sous-totaux après
    `recompute_total()`. Aucune modification après création.
    """

    def __init__(self, client_id: int, notes: Optional[str] = None, id: Optional[int] = None):
        self.id = id
        self.client_id = client_id
        self.notes = notes
        self.total_amount = ZERO
        self.items: list[DeliveryItem] = []
        self.created_at = _now()

    def __repr__(self) -> str:
        return f"<Delivery {self.id} client={self.client_id}>"

    def add_item(self, product: Product, quantity: int) -> DeliveryItem:
        """Ajoute une ligne et décrémente le stock du produit."""
        product.withdraw(quantity)
        item = DeliveryItem(product, quantity)
        self.items.append(item)
        return item

    def recompute_total(self) -> Decimal:
        self.total_amount = _sum_subtotals(self.items)
        return self.total_amount


class Order:
    """
    Commande : même règle de stock que la livraison, avec un statut.

    Un produit n'apparaît qu'une fois par commande ; une ligne
    répétée est fusionnée avec la ligne existante.
    """

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"

    def __init__(self, client_id: int, status: str = PENDING, id: Optional[int] = None):
        self.id = id
        self.client_id = client_id
        self.status = status
        self.total = ZERO
        self.items: list[OrderItem] = []
        self.created_at = _now()

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.status}>"

    def add_item(self, product: Product, quantity: int) -> OrderItem:
        product.withdraw(quantity)
        existing = next((i for i in self.items if i.product is product), None)
        if existing is not None:
            existing.increase(quantity)
            return existing
        item = OrderItem(product, quantity)
        self.items.append(item)
        return item

    def recompute_total(self) -> Decimal:
        self.total = _sum_subtotals(self.items)
        return self.total


class User:
    """Utilisateur de l'API (rôle admin ou staff)."""

    ADMIN = "admin"
    STAFF = "staff"
    ROLES = (ADMIN, STAFF)

    def __init__(
        self,
        username: str,
        email: str,
        password_hash: str,
        role: str = STAFF,
        id: Optional[int] = None,
    ):
        self.id = id
        self.username = username
        self.email = email
        self.password_hash = password_hash
        self.role = role
        self.created_at = _now()

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role})>"
