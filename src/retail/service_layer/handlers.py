"""
Handlers pour les commands et events.

Les handlers sont les fonctions qui traitent les commands et events
transitant par le message bus.

- Command handlers : exécutent une action (peuvent échouer)
- Event handlers : réagissent à un fait passé (ne doivent pas échouer)

Le cœur du module est le registre de stock (`_apply_stock_ledger`) :
une livraison ou une commande est validée, puis créée avec ses lignes
et les retraits de stock, dans une seule transaction.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Union

from werkzeug.security import generate_password_hash

from retail.domain import commands, errors, events, model

if TYPE_CHECKING:
    from retail.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

# Le stock est exclu : seuls le registre et SetStock/AdjustStock le modifient.
PRODUCT_FIELDS = ("code", "name", "description", "price", "category", "brand")
CLIENT_FIELDS = ("name", "email", "phone", "address")


# --- Registre de stock ---


def _lock_and_validate(
    client_id: int,
    lines: tuple[commands.LineRequest, ...],
    uow: AbstractUnitOfWork,
) -> dict[int, model.Product]:
    """
    Vérifie les préconditions sur un instantané verrouillé.

    Ordre des vérifications (chacune est bloquante) :
    1. au moins une ligne
    2. le client existe
    3. chaque produit existe
    4. chaque quantité est un entier strictement positif
    5. le stock couvre la quantité demandée (cumulée par produit)

    Aucune écriture n'a lieu ici. Retourne les produits verrouillés par id.
    """
    if not lines:
        raise errors.InvalidInput("Au moins une ligne est requise")

    if uow.clients.get(client_id) is None:
        raise errors.NotFound(f"Client {client_id} introuvable", client_id=client_id)

    products = {p.id: p for p in uow.products.lock(line.product_id for line in lines)}
    for line in lines:
        if line.product_id not in products:
            raise errors.NotFound(
                f"Produit {line.product_id} introuvable", product_id=line.product_id
            )

    for line in lines:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise errors.InvalidInput(
                f"Quantité invalide pour le produit {line.product_id} : {line.quantity!r}",
                product_id=line.product_id,
            )

    requested = Counter()
    for line in lines:
        requested[line.product_id] += line.quantity
    for product_id, quantity in requested.items():
        product = products[product_id]
        if not product.can_supply(quantity):
            raise errors.InsufficientStock(
                f"Stock insuffisant pour le produit {product.code} "
                f"(demandé : {quantity}, disponible : {product.stock})",
                product_id=product.id,
                code=product.code,
            )
    return products


def _apply_stock_ledger(
    document: Union[model.Delivery, model.Order],
    lines: tuple[commands.LineRequest, ...],
    products: dict[int, model.Product],
) -> None:
    for line in lines:
        document.add_item(products[line.product_id], line.quantity)
    document.recompute_total()


# --- Command Handlers ---


def create_delivery(cmd: commands.CreateDelivery, uow: AbstractUnitOfWork) -> int:
    """
    Enregistre une livraison et décrémente le stock, de façon atomique.

    Retourne l'id de la livraison créée. Toute erreur avant le commit
    annule tout : ni livraison, ni lignes, ni mouvement de stock.
    """
    with uow:
        products = _lock_and_validate(cmd.client_id, cmd.items, uow)
        delivery = model.Delivery(client_id=cmd.client_id, notes=cmd.notes)
        uow.deliveries.add(delivery)
        _apply_stock_ledger(delivery, cmd.items, products)
        uow.commit()
        logger.info(
            "Livraison %s créée pour le client %s (%d lignes, total %s)",
            delivery.id, cmd.client_id, len(cmd.items), delivery.total_amount,
        )
        return delivery.id


def create_order(cmd: commands.CreateOrder, uow: AbstractUnitOfWork) -> int:
    """Même registre de stock que la livraison ; la commande est créée « pending »."""
    with uow:
        products = _lock_and_validate(cmd.client_id, cmd.items, uow)
        order = model.Order(client_id=cmd.client_id)
        uow.orders.add(order)
        _apply_stock_ledger(order, cmd.items, products)
        uow.commit()
        logger.info("Commande %s créée pour le client %s", order.id, cmd.client_id)
        return order.id


def _lock_product(product_id: int, uow: AbstractUnitOfWork) -> model.Product:
    locked = uow.products.lock([product_id])
    if not locked:
        raise errors.NotFound(f"Produit {product_id} introuvable", product_id=product_id)
    return locked[0]


def set_stock(cmd: commands.SetStock, uow: AbstractUnitOfWork) -> int:
    with uow:
        product = _lock_product(cmd.product_id, uow)
        product.set_stock(cmd.stock)
        uow.commit()
        return product.stock


def adjust_stock(cmd: commands.AdjustStock, uow: AbstractUnitOfWork) -> int:
    """
    Ajustement relatif du stock, sous le même verrou que les livraisons.

    Un retrait supérieur au stock ramène celui-ci à zéro.
    """
    with uow:
        product = _lock_product(cmd.product_id, uow)
        before = product.stock
        product.adjust_stock(cmd.adjustment)
        uow.commit()
        logger.info(
            "Stock du produit %s ajusté de %+d : %d -> %d",
            cmd.product_id, cmd.adjustment, before, product.stock,
        )
        return product.stock


def create_product(cmd: commands.CreateProduct, uow: AbstractUnitOfWork) -> int:
    if cmd.stock < 0:
        raise errors.InvalidInput("Le stock initial ne peut pas être négatif")
    with uow:
        if uow.products.get_by_code(cmd.code) is not None:
            raise errors.Conflict(f"Le code produit {cmd.code} existe déjà", code=cmd.code)
        product = model.Product(
            code=cmd.code,
            name=cmd.name,
            price=cmd.price,
            category=cmd.category,
            stock=cmd.stock,
            description=cmd.description,
            brand=cmd.brand,
        )
        uow.products.add(product)
        uow.commit()
        return product.id


def update_product(cmd: commands.UpdateProduct, uow: AbstractUnitOfWork) -> None:
    if "stock" in cmd.changes:
        raise errors.InvalidInput(
            "Le stock ne se modifie que par les opérations de stock dédiées",
            product_id=cmd.product_id,
        )
    unknown = set(cmd.changes) - set(PRODUCT_FIELDS)
    if unknown:
        raise errors.InvalidInput(f"Champs inconnus : {', '.join(sorted(unknown))}")
    with uow:
        product = uow.products.get(cmd.product_id)
        if product is None:
            raise errors.NotFound(f"Produit {cmd.product_id} introuvable", product_id=cmd.product_id)
        code = cmd.changes.get("code")
        if code and code != product.code:
            existing = uow.products.get_by_code(code)
            if existing is not None:
                raise errors.Conflict(f"Le code produit {code} existe déjà", code=code)
        for name, value in cmd.changes.items():
            setattr(product, name, value)
        uow.commit()


def delete_product(cmd: commands.DeleteProduct, uow: AbstractUnitOfWork) -> None:
    with uow:
        product = uow.products.get(cmd.product_id)
        if product is None:
            raise errors.NotFound(f"Produit {cmd.product_id} introuvable", product_id=cmd.product_id)
        if uow.products.is_referenced(cmd.product_id):
            raise errors.Conflict(
                f"Le produit {product.code} figure dans des livraisons ou commandes",
                product_id=cmd.product_id,
            )
        uow.products.delete(product)
        uow.commit()


def create_client(cmd: commands.CreateClient, uow: AbstractUnitOfWork) -> int:
    with uow:
        if uow.clients.get_by_email(cmd.email) is not None:
            raise errors.Conflict(f"L'email {cmd.email} existe déjà", email=cmd.email)
        client = model.Client(
            name=cmd.name, email=cmd.email, phone=cmd.phone, address=cmd.address
        )
        uow.clients.add(client)
        uow.commit()
        return client.id


def update_client(cmd: commands.UpdateClient, uow: AbstractUnitOfWork) -> None:
    unknown = set(cmd.changes) - set(CLIENT_FIELDS)
    if unknown:
        raise errors.InvalidInput(f"Champs inconnus : {', '.join(sorted(unknown))}")
    with uow:
        client = uow.clients.get(cmd.client_id)
        if client is None:
            raise errors.NotFound(f"Client {cmd.client_id} introuvable", client_id=cmd.client_id)
        email = cmd.changes.get("email")
        if email and email != client.email:
            if uow.clients.get_by_email(email) is not None:
                raise errors.Conflict(f"L'email {email} existe déjà", email=email)
        for name, value in cmd.changes.items():
            setattr(client, name, value)
        uow.commit()


def delete_client(cmd: commands.DeleteClient, uow: AbstractUnitOfWork) -> None:
    """Un client qui a un historique (livraisons ou commandes) n'est pas supprimable."""
    with uow:
        client = uow.clients.get(cmd.client_id)
        if client is None:
            raise errors.NotFound(f"Client {cmd.client_id} introuvable", client_id=cmd.client_id)
        if uow.clients.has_history(cmd.client_id):
            raise errors.Conflict(
                f"Le client {cmd.client_id} a des livraisons ou commandes",
                client_id=cmd.client_id,
            )
        uow.clients.delete(client)
        uow.commit()


def register_user(cmd: commands.RegisterUser, uow: AbstractUnitOfWork) -> int:
    if cmd.role not in model.User.ROLES:
        raise errors.InvalidInput(f"Rôle inconnu : {cmd.role}")
    with uow:
        if uow.users.get_by_email(cmd.email) is not None:
            raise errors.Conflict(f"L'email {cmd.email} existe déjà", email=cmd.email)
        if uow.users.get_by_username(cmd.username) is not None:
            raise errors.Conflict(
                f"Le nom d'utilisateur {cmd.username} existe déjà", username=cmd.username
            )
        user = model.User(
            username=cmd.username,
            email=cmd.email,
            password_hash=generate_password_hash(cmd.password),
            role=cmd.role,
        )
        uow.users.add(user)
        uow.commit()
        return user.id


# --- Event Handlers ---


def log_stock_depleted(event: events.StockDepleted) -> None:
    logger.warning("Rupture de stock pour le produit %s (id %s)", event.code, event.product_id)

