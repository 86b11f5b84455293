"""
Point d'entrée Flask.

L'API Flask est un thin adapter : elle se contente de
convertir les requêtes HTTP en commands, les envoie au
message bus, et convertit les résultats en réponses HTTP.

Les erreurs typées du domaine sont traduites en codes HTTP via
une table explicite (STATUS_BY_KIND) ; aucune autre couche ne
connaît HTTP.

Enveloppes :
- succès : {message, data, total?, page?, limit?, totalPages?}
- échec  : {error, message?}
"""

from __future__ import annotations

import functools
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from flask import Blueprint, Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from retail import config
from retail.adapters import orm
from retail.domain import commands, errors
from retail.domain.errors import ErrorKind
from retail.logging_config import setup_logging
from retail.service_layer import auth, bootstrap, messagebus, unit_of_work
from retail.views import views

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INSUFFICIENT_STOCK: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
    ErrorKind.LOCK_TIMEOUT: 503,
}

ERROR_LABELS: dict[ErrorKind, str] = {
    ErrorKind.INVALID_INPUT: "Requête invalide",
    ErrorKind.UNAUTHORIZED: "Authentification requise",
    ErrorKind.FORBIDDEN: "Accès refusé",
    ErrorKind.NOT_FOUND: "Ressource introuvable",
    ErrorKind.INSUFFICIENT_STOCK: "Stock insuffisant",
    ErrorKind.CONFLICT: "Conflit",
    ErrorKind.INTERNAL: "Erreur interne",
    ErrorKind.LOCK_TIMEOUT: "Service temporairement indisponible",
}

api = Blueprint("api", __name__, url_prefix="/api")


def _bus() -> messagebus.MessageBus:
    return current_app.extensions["retail.bus"]


def _uow() -> unit_of_work.AbstractUnitOfWork:
    """Unit of Work en lecture seule, pour les views."""
    return _bus().dependencies["read_uow_factory"]()


# --- Réponses ---


def _ok(message: str, data: Any = None, status: int = 200, **extra: Any):
    body: dict[str, Any] = {"message": message}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status


def _created(message: str, view: Callable, resource_id: int):
    """
    Réponse 201 avec la ressource relue par sa view.

    L'écriture est déjà validée : si la relecture attend un verrou trop
    longtemps, on répond quand même 201 avec le seul id.
    """
    try:
        data = view(resource_id, _uow())
    except errors.LockTimeout:
        logger.warning("Relecture impossible après création (%s %s)", view.__name__, resource_id)
        data = {"id": resource_id}
    return _ok(message, data, 201)


def _paginated(message: str, data: list, result: dict):
    return _ok(
        message,
        data,
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        totalPages=result["totalPages"],
    )


def _error_response(kind: ErrorKind, message: Optional[str] = None):
    body = {"error": ERROR_LABELS[kind]}
    if message:
        body["message"] = message
    return jsonify(body), STATUS_BY_KIND[kind]


# --- Lecture de la requête ---


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise errors.InvalidInput("Le corps de la requête doit être un objet JSON")
    return data


def _as_int(value: Any, name: str) -> int:
    # bool est une sous-classe d'int : on le refuse explicitement
    if isinstance(value, bool) or not isinstance(value, int):
        raise errors.InvalidInput(f"Le champ {name} doit être un entier")
    return value


def _as_str(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise errors.InvalidInput(f"Le champ {name} doit être une chaîne non vide")
    return value.strip()


def _as_optional_str(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise errors.InvalidInput(f"Le champ {name} doit être une chaîne")
    return value


def _as_price(value: Any, name: str = "price") -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise errors.InvalidInput(f"Le champ {name} doit être un nombre")
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise errors.InvalidInput(f"Le champ {name} doit être un nombre") from None
    if not price.is_finite() or price < 0:
        raise errors.InvalidInput(f"Le champ {name} doit être positif")
    return price.quantize(Decimal("0.01"))


def _as_password(data: dict) -> str:
    password = data.get("password")
    if not isinstance(password, str) or not password:
        raise errors.InvalidInput("Le champ password est requis")
    return password


def _required(data: dict, name: str) -> Any:
    if data.get(name) is None:
        raise errors.InvalidInput(f"Le champ {name} est requis")
    return data[name]


def _lines(data: dict) -> tuple[commands.LineRequest, ...]:
    items = data.get("items")
    if not isinstance(items, list):
        raise errors.InvalidInput("Le champ items doit être une liste")
    lines = []
    for item in items:
        if not isinstance(item, dict):
            raise errors.InvalidInput("Chaque ligne doit être un objet {productId, quantity}")
        lines.append(
            commands.LineRequest(
                product_id=_as_int(_required(item, "productId"), "productId"),
                quantity=_as_int(_required(item, "quantity"), "quantity"),
            )
        )
    return tuple(lines)


def _positive_arg(name: str, default: int) -> int:
    value = request.args.get(name, type=int)
    if value is None:
        return default
    return max(1, value)


def _pagination() -> tuple[int, int]:
    return _positive_arg("page", DEFAULT_PAGE), min(_positive_arg("limit", DEFAULT_LIMIT), MAX_LIMIT)


def _optional_int_arg(name: str) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise errors.InvalidInput(f"Le paramètre {name} doit être un entier") from None


def _optional_price_arg(name: str) -> Optional[Decimal]:
    raw = request.args.get(name)
    return None if raw is None else _as_price(raw, name)


# --- Authentification ---


def token_required(view: Callable) -> Callable:
    """Exige un jeton d'accès valide (en-tête Authorization: Bearer <jeton>)."""

    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise errors.Unauthorized("Jeton d'accès requis dans l'en-tête Authorization")
        claims = _bus().dependencies["tokens"].verify_access(token)
        g.user = {"id": claims.get("id"), "role": claims.get("role")}
        return view(*args, **kwargs)

    return wrapper


def roles_required(*roles: str) -> Callable:
    def decorator(view: Callable) -> Callable:
        @functools.wraps(view)
        def wrapper(*args, **kwargs):
            if g.user["role"] not in roles:
                raise errors.Forbidden(f"Rôle requis : {' ou '.join(roles)}")
            return view(*args, **kwargs)

        return token_required(wrapper)

    return decorator


@api.route("/auth/register", methods=["POST"])
def register_endpoint():
    data = _json_body()
    cmd = commands.RegisterUser(
        username=_as_str(data.get("username", data.get("name")), "username"),
        email=_as_str(_required(data, "email"), "email"),
        password=_as_password(data),
        role=data.get("role") or "staff",
    )
    user_id = _bus().handle(cmd).pop(0)
    return _created("Utilisateur créé avec succès", auth.current_user, user_id)


@api.route("/auth/login", methods=["POST"])
def login_endpoint():
    data = _json_body()
    result = auth.login(
        email=_as_str(_required(data, "email"), "email"),
        password=_as_password(data),
        uow=_uow(),
        tokens=_bus().dependencies["tokens"],
    )
    return _ok("Connexion réussie", result)


@api.route("/auth/refresh", methods=["POST"])
def refresh_endpoint():
    data = _json_body()
    result = auth.refresh(
        _as_str(_required(data, "refreshToken"), "refreshToken"),
        uow=_uow(),
        tokens=_bus().dependencies["tokens"],
    )
    return _ok("Jetons renouvelés avec succès", result)


@api.route("/auth/me", methods=["GET"])
@token_required
def me_endpoint():
    return _ok("Utilisateur courant", auth.current_user(g.user["id"], _uow()))


# --- Livraisons ---


@api.route("/deliveries", methods=["POST"])
def create_delivery_endpoint():
    """
    POST /api/deliveries
    Body JSON : { clientId, items: [{productId, quantity}], notes? }

    Enregistre une livraison et décrémente le stock.
    201 si créée ; 404 client/produit inconnu ; 409 stock insuffisant.
    """
    data = _json_body()
    cmd = commands.CreateDelivery(
        client_id=_as_int(_required(data, "clientId"), "clientId"),
        items=_lines(data),
        notes=_as_optional_str(data.get("notes"), "notes"),
    )
    delivery_id = _bus().handle(cmd).pop(0)
    return _created("Livraison créée avec succès", views.delivery, delivery_id)


@api.route("/deliveries/<int:delivery_id>", methods=["GET"])
def delivery_endpoint(delivery_id: int):
    result = views.delivery(delivery_id, _uow())
    if result is None:
        raise errors.NotFound(f"Livraison {delivery_id} introuvable")
    return _ok("Livraison récupérée avec succès", result)


@api.route("/deliveries/client/<int:client_id>/history", methods=["GET"])
def client_history_endpoint(client_id: int):
    page, limit = _pagination()
    result = views.client_history(client_id, _uow(), page=page, limit=limit)
    return _paginated(
        "Historique des livraisons du client récupéré avec succès", result["deliveries"], result
    )


# --- Commandes ---


@api.route("/orders", methods=["POST"])
def create_order_endpoint():
    data = _json_body()
    cmd = commands.CreateOrder(
        client_id=_as_int(_required(data, "clientId"), "clientId"),
        items=_lines(data),
    )
    order_id = _bus().handle(cmd).pop(0)
    return _created("Commande créée avec succès", views.order, order_id)


@api.route("/orders", methods=["GET"])
def orders_endpoint():
    page, limit = _pagination()
    result = views.orders(
        _uow(),
        client_id=_optional_int_arg("clientId"),
        product_id=_optional_int_arg("productId"),
        page=page,
        limit=limit,
    )
    return _paginated("Commandes récupérées avec succès", result["orders"], result)


@api.route("/orders/<int:order_id>", methods=["GET"])
def order_endpoint(order_id: int):
    result = views.order(order_id, _uow())
    if result is None:
        raise errors.NotFound(f"Commande {order_id} introuvable")
    return _ok("Commande récupérée avec succès", result)


# --- Produits ---


def _product_changes(data: dict) -> dict[str, Any]:
    parsers = {
        "code": _as_str,
        "name": _as_str,
        "category": _as_str,
        "description": _as_optional_str,
        "brand": _as_optional_str,
        "price": _as_price,
    }
    return {
        name: parsers[name](value, name) if name in parsers else value
        for name, value in data.items()
    }


@api.route("/products", methods=["GET"])
def products_endpoint():
    page, limit = _pagination()
    in_stock = request.args.get("inStock")
    result = views.products(
        _uow(),
        search=request.args.get("search"),
        category=request.args.get("category"),
        min_price=_optional_price_arg("minPrice"),
        max_price=_optional_price_arg("maxPrice"),
        in_stock=None if in_stock is None else in_stock == "true",
        page=page,
        limit=limit,
    )
    return _paginated("Produits récupérés avec succès", result["products"], result)


@api.route("/products", methods=["POST"])
def create_product_endpoint():
    data = _json_body()
    cmd = commands.CreateProduct(
        code=_as_str(_required(data, "code"), "code"),
        name=_as_str(_required(data, "name"), "name"),
        price=_as_price(_required(data, "price")),
        category=_as_str(_required(data, "category"), "category"),
        stock=_as_int(data.get("stock", 0), "stock"),
        description=_as_optional_str(data.get("description"), "description"),
        brand=_as_optional_str(data.get("brand"), "brand"),
    )
    product_id = _bus().handle(cmd).pop(0)
    return _created("Produit créé avec succès", views.product, product_id)


@api.route("/products/categories", methods=["GET"])
def categories_endpoint():
    return _ok("Catégories récupérées avec succès", views.categories(_uow()))


@api.route("/products/code/<code>", methods=["GET"])
def product_by_code_endpoint(code: str):
    result = views.product_by_code(code, _uow())
    if result is None:
        raise errors.NotFound(f"Aucun produit avec le code '{code}'")
    return _ok("Produit récupéré avec succès", result)


@api.route("/products/<int:product_id>", methods=["GET"])
def product_endpoint(product_id: int):
    result = views.product(product_id, _uow())
    if result is None:
        raise errors.NotFound(f"Produit {product_id} introuvable")
    return _ok("Produit récupéré avec succès", result)


@api.route("/products/<int:product_id>", methods=["PUT"])
def update_product_endpoint(product_id: int):
    cmd = commands.UpdateProduct(product_id=product_id, changes=_product_changes(_json_body()))
    _bus().handle(cmd)
    return _ok("Produit mis à jour avec succès", views.product(product_id, _uow()))


@api.route("/products/<int:product_id>", methods=["DELETE"])
def delete_product_endpoint(product_id: int):
    _bus().handle(commands.DeleteProduct(product_id=product_id))
    return _ok("Produit supprimé avec succès")


@api.route("/products/<int:product_id>/stock", methods=["PUT"])
@roles_required("admin", "staff")
def set_stock_endpoint(product_id: int):
    data = _json_body()
    stock = _as_int(_required(data, "stock"), "stock")
    _bus().handle(commands.SetStock(product_id=product_id, stock=stock))
    return _ok("Stock mis à jour avec succès", views.product(product_id, _uow()))


@api.route("/products/<int:product_id>/stock/adjust", methods=["POST"])
@roles_required("admin", "staff")
def adjust_stock_endpoint(product_id: int):
    data = _json_body()
    adjustment = _as_int(_required(data, "adjustment"), "adjustment")
    _bus().handle(commands.AdjustStock(product_id=product_id, adjustment=adjustment))
    return _ok("Stock ajusté avec succès", views.product(product_id, _uow()))


# --- Clients ---


@api.route("/clients", methods=["GET"])
def clients_endpoint():
    page, limit = _pagination()
    result = views.clients(_uow(), search=request.args.get("search"), page=page, limit=limit)
    return _paginated("Clients récupérés avec succès", result["clients"], result)


@api.route("/clients", methods=["POST"])
def create_client_endpoint():
    data = _json_body()
    cmd = commands.CreateClient(
        name=_as_str(_required(data, "name"), "name"),
        email=_as_str(_required(data, "email"), "email"),
        phone=_as_optional_str(data.get("phone"), "phone"),
        address=_as_optional_str(data.get("address"), "address"),
    )
    client_id = _bus().handle(cmd).pop(0)
    return _created("Client créé avec succès", views.client, client_id)


@api.route("/clients/<int:client_id>", methods=["GET"])
def client_endpoint(client_id: int):
    result = views.client(client_id, _uow())
    if result is None:
        raise errors.NotFound(f"Client {client_id} introuvable")
    return _ok("Client récupéré avec succès", result)


@api.route("/clients/<int:client_id>", methods=["PUT"])
def update_client_endpoint(client_id: int):
    data = _json_body()
    parsers = {"name": _as_str, "email": _as_str, "phone": _as_optional_str, "address": _as_optional_str}
    changes = {
        name: parsers[name](value, name) if name in parsers else value
        for name, value in data.items()
    }
    _bus().handle(commands.UpdateClient(client_id=client_id, changes=changes))
    return _ok("Client mis à jour avec succès", views.client(client_id, _uow()))


@api.route("/clients/<int:client_id>", methods=["DELETE"])
def delete_client_endpoint(client_id: int):
    _bus().handle(commands.DeleteClient(client_id=client_id))
    return _ok("Client supprimé avec succès")


# --- Application ---


def handle_retail_error(e: errors.RetailError):
    if e.kind is ErrorKind.INTERNAL:
        logger.error("Erreur interne : %s", e.message)
    return _error_response(e.kind, e.message)


def handle_unexpected_error(e: Exception):
    if isinstance(e, HTTPException):
        return jsonify({"error": e.name, "message": e.description}), e.code
    logger.exception("Erreur inattendue lors du traitement de %s %s", request.method, request.path)
    return _error_response(ErrorKind.INTERNAL)


def create_app(bus: messagebus.MessageBus | None = None) -> Flask:
    """
    Construit l'application Flask.

    Le bus est construit une seule fois (ou injecté par les tests)
    et rangé dans `app.extensions`.
    """
    app = Flask(__name__)
    app.extensions["retail.bus"] = bus if bus is not None else bootstrap.bootstrap()
    app.register_blueprint(api)
    app.register_error_handler(errors.RetailError, handle_retail_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify({"status": "ok"}), 200

    return app


def main() -> None:
    setup_logging()
    orm.start_mappers()
    session_factory = unit_of_work.create_session_factory()
    orm.metadata.create_all(session_factory.kw["bind"])
    app = create_app(bootstrap.bootstrap(start_orm=False, session_factory=session_factory))
    host, port = config.get_api_bind()
    logger.info("API démarrée sur http://%s:%s", host, port)
    app.run(host=host, port=port, threaded=True)


if __name__ == "__main__":
    main()
