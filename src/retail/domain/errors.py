"""
Taxonomie des erreurs du domaine.

Chaque erreur porte un `kind` (ErrorKind). La couche HTTP traduit
ce `kind` en code de statut via une table explicite ; le domaine et
la service layer ne connaissent rien de HTTP.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorKind(enum.Enum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    CONFLICT = "conflict"
    LOCK_TIMEOUT = "lock_timeout"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    INTERNAL = "internal"


class RetailError(Exception):
    """
    Classe de base des erreurs typées.

    Le contexte (id ou code du produit fautif, etc.) est conservé
    dans `context` pour construire un message précis côté API.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class InvalidInput(RetailError):
    kind = ErrorKind.INVALID_INPUT


class NotFound(RetailError):
    kind = ErrorKind.NOT_FOUND


class InsufficientStock(RetailError):
    """Levée quand la quantité demandée dépasse le stock disponible."""

    kind = ErrorKind.INSUFFICIENT_STOCK


class Conflict(RetailError):
    """Violation d'unicité (email client, code produit, …) ou suppression impossible."""

    kind = ErrorKind.CONFLICT


class LockTimeout(RetailError):
    """L'attente d'un verrou de ligne a dépassé le délai configuré."""

    kind = ErrorKind.LOCK_TIMEOUT


class Unauthorized(RetailError):
    kind = ErrorKind.UNAUTHORIZED


class Forbidden(RetailError):
    kind = ErrorKind.FORBIDDEN


class Internal(RetailError):
    kind = ErrorKind.INTERNAL
