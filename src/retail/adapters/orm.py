"""
Mapping ORM avec SQLAlchemy (classical mapping).

On définit les tables séparément, puis on mappe les classes
du domaine sur ces tables. Le modèle de domaine reste ignorant
de la persistance.

Les contraintes d'unicité (email client, code produit, …) sont
portées par la base : c'est la seconde ligne de défense derrière
les vérifications faites par les handlers.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import registry, relationship

from retail.domain import model

metadata = MetaData()
mapper_registry = registry(metadata=metadata)

# --- Définition des tables ---

clients = Table(
    "clients",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(100), nullable=False, unique=True),
    Column("phone", String(20), nullable=True),
    Column("address", String(200), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(50), nullable=False, unique=True),
    Column("name", String(100), nullable=False),
    Column("description", Text, nullable=True),
    Column("price", Numeric(10, 2), nullable=False),
    Column("category", String(50), nullable=False),
    Column("stock", Integer, nullable=False, server_default="0"),
    Column("brand", String(50), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
)

deliveries = Table(
    "deliveries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("client_id", Integer, ForeignKey("clients.id"), nullable=False, index=True),
    Column("total_amount", Numeric(10, 2), nullable=False, server_default="0"),
    Column("notes", String(255), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

delivery_items = Table(
    "delivery_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("delivery_id", Integer, ForeignKey("deliveries.id"), nullable=False, index=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False, index=True),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Numeric(10, 2), nullable=False),
    Column("subtotal", Numeric(10, 2), nullable=False),
    CheckConstraint("quantity > 0", name="ck_delivery_items_quantity_positive"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("client_id", Integer, ForeignKey("clients.id"), nullable=False, index=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("total", Numeric(12, 2), nullable=False, server_default="0"),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, index=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False, index=True),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Numeric(10, 2), nullable=False),
    Column("subtotal", Numeric(12, 2), nullable=False),
    UniqueConstraint("order_id", "product_id", name="uq_order_items_order_product"),
    CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(100), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(20), nullable=False, server_default="staff"),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


def start_mappers() -> None:
    """
    Configure le mapping entre les classes du domaine et les tables SQL.

    Idempotent : un second appel ne fait rien.
    """
    if mapper_registry.mappers:
        return

    mapper_registry.map_imperatively(model.Client, clients)
    products_mapper = mapper_registry.map_imperatively(model.Product, products)
    mapper_registry.map_imperatively(model.User, users)

    delivery_items_mapper = mapper_registry.map_imperatively(
        model.DeliveryItem,
        delivery_items,
        properties={"product": relationship(products_mapper, lazy="joined")},
    )
    mapper_registry.map_imperatively(
        model.Delivery,
        deliveries,
        properties={
            "items": relationship(
                delivery_items_mapper,
                cascade="all, delete-orphan",
                order_by=delivery_items.c.id,
            ),
        },
    )

    order_items_mapper = mapper_registry.map_imperatively(
        model.OrderItem,
        order_items,
        properties={"product": relationship(products_mapper, lazy="joined")},
    )
    mapper_registry.map_imperatively(
        model.Order,
        orders,
        properties={
            "items": relationship(
                order_items_mapper,
                cascade="all, delete-orphan",
                order_by=order_items.c.id,
            ),
        },
    )


@event.listens_for(model.Product, "load")
def receive_load(product: model.Product, _: object) -> None:
    """Initialise la liste d'événements quand un Produit est chargé depuis la BDD."""
    product.events = []
