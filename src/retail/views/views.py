"""
Views (lecture) pour le pattern CQRS.

Les views sont des fonctions de lecture pure qui interrogent
directement la base de données, sans passer par le modèle de domaine
ni poser de verrou.

Les dictionnaires retournés utilisent les clés camelCase de l'API.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Table, func, select

from retail.adapters import orm
from retail.domain import errors
from retail.service_layer import unit_of_work


def _money(value: Any) -> Optional[str]:
    return None if value is None else f"{Decimal(value):.2f}"


def _timestamp(value: Any) -> Optional[str]:
    return None if value is None else value.isoformat()


def _page(total: int, page: int, limit: int) -> dict[str, int]:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def _product_dict(row: Any) -> dict[str, Any]:
    return {
        "id": row.id,
        "code": row.code,
        "name": row.name,
        "description": row.description,
        "price": _money(row.price),
        "category": row.category,
        "stock": row.stock,
        "brand": row.brand,
        "createdAt": _timestamp(row.created_at),
    }


def _client_dict(row: Any) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "email": row.email,
        "phone": row.phone,
        "address": row.address,
        "createdAt": _timestamp(row.created_at),
    }


def _items_by_parent(
    session: Any, items_table: Table, parent_column: str, parent_ids: list[int]
) -> dict[int, list[dict[str, Any]]]:
    """
    Charge en une requête les lignes de plusieurs documents, avec la
    projection minimale du produit (id, code, nom).
    """
    grouped: dict[int, list[dict[str, Any]]] = {id_: [] for id_ in parent_ids}
    if not parent_ids:
        return grouped
    parent = items_table.c[parent_column]
    rows = session.execute(
        select(
            items_table,
            orm.products.c.code.label("product_code"),
            orm.products.c.name.label("product_name"),
        )
        .join(orm.products, orm.products.c.id == items_table.c.product_id)
        .where(parent.in_(parent_ids))
        .order_by(items_table.c.id)
    ).mappings()
    for row in rows:
        grouped[row[parent_column]].append(
            {
                "id": row["id"],
                "productId": row["product_id"],
                "quantity": row["quantity"],
                "unitPrice": _money(row["unit_price"]),
                "subtotal": _money(row["subtotal"]),
                "product": {
                    "id": row["product_id"],
                    "code": row["product_code"],
                    "name": row["product_name"],
                },
            }
        )
    return grouped


def _delivery_dict(row: Any, items: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "id": row.id,
        "clientId": row.client_id,
        "totalAmount": _money(row.total_amount),
        "notes": row.notes,
        "createdAt": _timestamp(row.created_at),
        "items": items,
    }


def _order_dict(row: Any, items: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "id": row.id,
        "clientId": row.client_id,
        "status": row.status,
        "total": _money(row.total),
        "createdAt": _timestamp(row.created_at),
        "items": items,
    }


def _client_row(session: Any, client_id: int) -> Any:
    return session.execute(
        select(orm.clients).where(orm.clients.c.id == client_id)
    ).first()


# --- Livraisons ---


def delivery(delivery_id: int, uow: unit_of_work.SqlAlchemyUnitOfWork) -> dict | None:
    """Une livraison avec son client, ses lignes et la projection produit."""
    with uow:
        row = uow.session.execute(
            select(orm.deliveries).where(orm.deliveries.c.id == delivery_id)
        ).first()
        if row is None:
            return None
        items = _items_by_parent(uow.session, orm.delivery_items, "delivery_id", [row.id])
        result = _delivery_dict(row, items[row.id])
        client = _client_row(uow.session, row.client_id)
        result["client"] = _client_dict(client) if client else None
        return result


def client_history(
    client_id: int,
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    """
    Historique paginé des livraisons d'un client, la plus récente d'abord.

    Lève NotFound si le client n'existe pas.
    """
    with uow:
        if _client_row(uow.session, client_id) is None:
            raise errors.NotFound(f"Client {client_id} introuvable", client_id=client_id)
        condition = orm.deliveries.c.client_id == client_id
        total = uow.session.scalar(
            select(func.count()).select_from(orm.deliveries).where(condition)
        )
        rows = uow.session.execute(
            select(orm.deliveries)
            .where(condition)
            .order_by(orm.deliveries.c.created_at.desc(), orm.deliveries.c.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()
        items = _items_by_parent(
            uow.session, orm.delivery_items, "delivery_id", [r.id for r in rows]
        )
        return {
            "deliveries": [_delivery_dict(r, items[r.id]) for r in rows],
            **_page(total, page, limit),
        }


# --- Commandes ---


def order(order_id: int, uow: unit_of_work.SqlAlchemyUnitOfWork) -> dict | None:
    with uow:
        row = uow.session.execute(
            select(orm.orders).where(orm.orders.c.id == order_id)
        ).first()
        if row is None:
            return None
        items = _items_by_parent(uow.session, orm.order_items, "order_id", [row.id])
        result = _order_dict(row, items[row.id])
        client = _client_row(uow.session, row.client_id)
        result["client"] = _client_dict(client) if client else None
        return result


def orders(
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    client_id: Optional[int] = None,
    product_id: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    """Commandes filtrées par client et/ou par produit commandé."""
    conditions = []
    if client_id is not None:
        conditions.append(orm.orders.c.client_id == client_id)
    if product_id is not None:
        conditions.append(
            orm.orders.c.id.in_(
                select(orm.order_items.c.order_id).where(
                    orm.order_items.c.product_id == product_id
                )
            )
        )
    with uow:
        total = uow.session.scalar(
            select(func.count()).select_from(orm.orders).where(*conditions)
        )
        rows = uow.session.execute(
            select(orm.orders)
            .where(*conditions)
            .order_by(orm.orders.c.created_at.desc(), orm.orders.c.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()
        items = _items_by_parent(uow.session, orm.order_items, "order_id", [r.id for r in rows])
        return {
            "orders": [_order_dict(r, items[r.id]) for r in rows],
            **_page(total, page, limit),
        }


# --- Produits ---


def product(product_id: int, uow: unit_of_work.SqlAlchemyUnitOfWork) -> dict | None:
    with uow:
        row = uow.session.execute(
            select(orm.products).where(orm.products.c.id == product_id)
        ).first()
        return _product_dict(row) if row else None


def product_by_code(code: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> dict | None:
    with uow:
        row = uow.session.execute(
            select(orm.products).where(orm.products.c.code == code)
        ).first()
        return _product_dict(row) if row else None


def products(
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    in_stock: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    table = orm.products
    conditions = []
    if category:
        conditions.append(table.c.category == category)
    if min_price is not None:
        conditions.append(table.c.price >= min_price)
    if max_price is not None:
        conditions.append(table.c.price <= max_price)
    if in_stock is True:
        conditions.append(table.c.stock > 0)
    elif in_stock is False:
        conditions.append(table.c.stock <= 0)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            table.c.name.ilike(pattern)
            | table.c.description.ilike(pattern)
            | table.c.code.ilike(pattern)
        )
    with uow:
        total = uow.session.scalar(select(func.count()).select_from(table).where(*conditions))
        rows = uow.session.execute(
            select(table)
            .where(*conditions)
            .order_by(table.c.created_at.desc(), table.c.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()
        return {"products": [_product_dict(r) for r in rows], **_page(total, page, limit)}


def categories(uow: unit_of_work.SqlAlchemyUnitOfWork) -> list[str]:
    with uow:
        rows = uow.session.execute(
            select(orm.products.c.category).distinct().order_by(orm.products.c.category)
        )
        return [r.category for r in rows]


# --- Clients ---


def client(client_id: int, uow: unit_of_work.SqlAlchemyUnitOfWork) -> dict | None:
    with uow:
        row = _client_row(uow.session, client_id)
        return _client_dict(row) if row else None


def clients(
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    table = orm.clients
    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(table.c.name.ilike(pattern) | table.c.email.ilike(pattern))
    with uow:
        total = uow.session.scalar(select(func.count()).select_from(table).where(*conditions))
        rows = uow.session.execute(
            select(table)
            .where(*conditions)
            .order_by(table.c.created_at.desc(), table.c.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()
        return {"clients": [_client_dict(r) for r in rows], **_page(total, page, limit)}
