"""
Tests de l'adapter JWT.
"""

from datetime import timedelta

import jwt
import pytest

from retail.adapters.tokens import JwtTokens
from retail.domain import errors


def créer_jetons(**kwargs) -> JwtTokens:
    return JwtTokens(
        access_secret="secret-acces-0123456789abcdef-test",
        refresh_secret="secret-refresh-0123456789abcdef-test",
        **kwargs,
    )


class TestJwtTokens:
    def test_le_jeton_d_accès_porte_id_et_rôle(self):
        tokens = créer_jetons()

        claims = tokens.verify_access(tokens.issue_access({"id": 7, "role": "admin"}))

        assert claims["id"] == 7
        assert claims["role"] == "admin"
        assert claims["type"] == "access"

    def test_un_jeton_de_rafraîchissement_n_ouvre_pas_l_accès(self):
        tokens = créer_jetons()
        refresh = tokens.issue_refresh({"id": 7, "role": "staff"})

        with pytest.raises(errors.Forbidden):
            tokens.verify_access(refresh)

    def test_secrets_distincts(self):
        tokens = créer_jetons()
        access = tokens.issue_access({"id": 7, "role": "staff"})

        with pytest.raises(errors.Forbidden):
            tokens.verify_refresh(access)

    def test_jeton_expiré(self):
        tokens = créer_jetons(access_ttl=timedelta(seconds=-1))

        with pytest.raises(errors.Forbidden):
            tokens.verify_access(tokens.issue_access({"id": 7, "role": "staff"}))

    def test_jeton_signé_par_un_autre_secret(self):
        tokens = créer_jetons()
        forgé = jwt.encode(
            {"id": 1, "role": "admin", "type": "access"},
            "un-autre-secret-0123456789abcdef-test",
            algorithm="HS256",
        )

        with pytest.raises(errors.Forbidden):
            tokens.verify_access(forgé)

    def test_jeton_illisible(self):
        with pytest.raises(errors.Forbidden):
            créer_jetons().verify_access("pas-un-jeton")
