"""
Adapter pour les jetons d'authentification (JWT).

Deux jetons signés avec des secrets distincts :
- access : courte durée, présenté dans l'en-tête Authorization
- refresh : longue durée, échangé contre une nouvelle paire
"""

from __future__ import annotations

import abc
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from retail.domain import errors

ALGORITHM = "HS256"


class AbstractTokens(abc.ABC):
    """Interface abstraite d'émission et de vérification des jetons."""

    @abc.abstractmethod
    def issue_access(self, payload: dict[str, Any]) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    def issue_refresh(self, payload: dict[str, Any]) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    def verify_access(self, token: str) -> dict[str, Any]:
        raise NotImplementedError

    @abc.abstractmethod
    def verify_refresh(self, token: str) -> dict[str, Any]:
        raise NotImplementedError


class JwtTokens(AbstractTokens):
    """Implémentation avec PyJWT (HS256)."""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=7),
    ):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def _issue(self, payload: dict[str, Any], secret: str, ttl: timedelta, kind: str) -> str:
        now = datetime.now(timezone.utc)
        claims = {**payload, "type": kind, "iat": now, "exp": now + ttl}
        return jwt.encode(claims, secret, algorithm=ALGORITHM)

    def _verify(self, token: str, secret: str, kind: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
        except jwt.PyJWTError as e:
            raise errors.Forbidden("Jeton invalide ou expiré") from e
        if claims.get("type") != kind:
            raise errors.Forbidden("Type de jeton inattendu")
        return claims

    def issue_access(self, payload: dict[str, Any]) -> str:
        return self._issue(payload, self.access_secret, self.access_ttl, "access")

    def issue_refresh(self, payload: dict[str, Any]) -> str:
        return self._issue(payload, self.refresh_secret, self.refresh_ttl, "refresh")

    def verify_access(self, token: str) -> dict[str, Any]:
        return self._verify(token, self.access_secret, "access")

    def verify_refresh(self, token: str) -> dict[str, Any]:
        return self._verify(token, self.refresh_secret, "refresh")
