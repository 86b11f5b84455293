"""
Authentification : connexion et renouvellement des jetons.

Ce ne sont pas des commands (rien n'est écrit en base) : comme les
views, ces fonctions reçoivent le Unit of Work en paramètre.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from werkzeug.security import check_password_hash

from retail.domain import errors, model

if TYPE_CHECKING:
    from retail.adapters.tokens import AbstractTokens
    from retail.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


def user_to_dict(user: model.User) -> dict[str, Any]:
    """Projection publique d'un utilisateur (jamais le hash du mot de passe)."""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role,
    }


def _token_pair(user_id: int, role: str, tokens: AbstractTokens) -> dict[str, str]:
    payload = {"id": user_id, "role": role}
    return {
        "accessToken": tokens.issue_access(payload),
        "refreshToken": tokens.issue_refresh(payload),
    }


def login(email: str, password: str, uow: AbstractUnitOfWork, tokens: AbstractTokens) -> dict:
    """
    Vérifie les identifiants et retourne l'utilisateur et une paire de jetons.

    Le même message est renvoyé que l'email soit inconnu ou le mot
    de passe faux.
    """
    with uow:
        user = uow.users.get_by_email(email)
        if user is None or not check_password_hash(user.password_hash, password):
            logger.info("Échec de connexion pour %s", email)
            raise errors.Unauthorized("Identifiants invalides")
        return {"user": user_to_dict(user), **_token_pair(user.id, user.role, tokens)}


def refresh(refresh_token: str, uow: AbstractUnitOfWork, tokens: AbstractTokens) -> dict:
    """Échange un jeton de rafraîchissement valide contre une nouvelle paire."""
    claims = tokens.verify_refresh(refresh_token)
    if not isinstance(claims.get("id"), int):
        raise errors.Forbidden("Jeton de rafraîchissement invalide")
    with uow:
        user = uow.users.get(claims["id"])
        if user is None:
            raise errors.Forbidden("Jeton de rafraîchissement invalide")
        return _token_pair(user.id, user.role, tokens)


def current_user(user_id: int, uow: AbstractUnitOfWork) -> dict:
    with uow:
        user = uow.users.get(user_id)
        if user is None:
            raise errors.NotFound(f"Utilisateur {user_id} introuvable", user_id=user_id)
        return user_to_dict(user)
