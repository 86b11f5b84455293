"""
Tests des handlers via la service layer (high gear).

Ces tests utilisent des fakes (FakeRepository, FakeUnitOfWork)
pour tester le comportement métier sans base de données ni I/O.
C'est le "high gear" : on teste les cas d'usage complets.
"""

from __future__ import annotations

import logging
from decimal import Decimal

import pytest
from werkzeug.security import check_password_hash

from retail.adapters import repository
from retail.domain import commands, errors
from retail.domain.model import Client, Delivery, Product, User
from retail.service_layer import bootstrap, messagebus, unit_of_work


# --- Fakes pour les tests ---


class FakeRepository(repository.AbstractRepository):
    """
    Repository en mémoire pour les tests.

    Attribue un id à l'ajout, comme le ferait la base au flush.
    Hérite d'AbstractRepository pour bénéficier du tracking `seen`.
    """

    def __init__(self, entities: list | None = None):
        super().__init__()
        self._entities = list(entities or [])
        self._next_id = max((e.id for e in self._entities), default=0) + 1

    def _add(self, entity) -> None:
        if entity.id is None:
            entity.id = self._next_id
            self._next_id += 1
        self._entities.append(entity)

    def _get(self, id: int):
        return next((e for e in self._entities if e.id == id), None)

    def _delete(self, entity) -> None:
        self._entities.remove(entity)

    def list(self) -> list:
        return list(self._entities)


class FakeProductRepository(FakeRepository, repository.AbstractProductRepository):
    def __init__(self, products=None, documents=()):
        super().__init__(products)
        self.documents = documents
        self.lock_requests: list[list[int]] = []

    def _get_by_code(self, code: str):
        return next((p for p in self._entities if p.code == code), None)

    def _lock(self, product_ids: list[int]):
        self.lock_requests.append(product_ids)
        return [p for p in sorted(self._entities, key=lambda p: p.id) if p.id in product_ids]

    def is_referenced(self, product_id: int) -> bool:
        return any(
            item.product_id == product_id
            for repo in self.documents
            for document in repo.list()
            for item in document.items
        )


class FakeClientRepository(FakeRepository, repository.AbstractClientRepository):
    def __init__(self, clients=None, documents=()):
        super().__init__(clients)
        self.documents = documents

    def get_by_email(self, email: str):
        return next((c for c in self._entities if c.email == email), None)

    def has_history(self, client_id: int) -> bool:
        return any(d.client_id == client_id for repo in self.documents for d in repo.list())


class FakeUserRepository(FakeRepository, repository.AbstractUserRepository):
    def get_by_email(self, email: str):
        return next((u for u in self._entities if u.email == email), None)

    def get_by_username(self, username: str):
        return next((u for u in self._entities if u.username == username), None)


class FakeUnitOfWork(unit_of_work.AbstractUnitOfWork):
    """
    Unit of Work en mémoire pour les tests.

    L'attribut `committed` permet de vérifier que le commit
    a bien été appelé dans les tests.
    """

    def __init__(self, clients=None, products=None) -> None:
        self.deliveries = FakeRepository()
        self.orders = FakeRepository()
        documents = (self.deliveries, self.orders)
        self.clients = FakeClientRepository(clients, documents)
        self.products = FakeProductRepository(products, documents)
        self.users = FakeUserRepository()
        self.committed = False

    def __enter__(self) -> FakeUnitOfWork:
        return super().__enter__()

    def _commit(self) -> None:
        self.committed = True

    def rollback(self) -> None:
        pass


class FakeTokens:
    def issue_access(self, payload):
        return f"access-{payload['id']}"

    def issue_refresh(self, payload):
        return f"refresh-{payload['id']}"


# --- Bootstrap de test ---


def bootstrap_test_bus(uow: FakeUnitOfWork | None = None) -> messagebus.MessageBus:
    """
    Construit un MessageBus configuré avec des fakes.

    Même wiring que la production, mais avec des implémentations
    en mémoire pour l'isolation et la rapidité.
    """
    if uow is None:
        uow = FakeUnitOfWork()
    return bootstrap.bootstrap(
        start_orm=False,
        uow_factory=lambda: uow,
        tokens_adapter=FakeTokens(),
    )


def boutique() -> FakeUnitOfWork:
    """Un client et trois produits : A (10 € x 5), B (5 € x 3), C (1 € x 2)."""
    return FakeUnitOfWork(
        clients=[Client("Alice", "alice@example.com", id=1)],
        products=[
            Product("A", "Produit A", Decimal("10.00"), "maison", stock=5, id=1),
            Product("B", "Produit B", Decimal("5.00"), "maison", stock=3, id=2),
            Product("C", "Produit C", Decimal("1.00"), "jardin", stock=2, id=3),
        ],
    )


def lignes(*paires: tuple[int, int]) -> tuple[commands.LineRequest, ...]:
    return tuple(commands.LineRequest(product_id=p, quantity=q) for p, q in paires)


def stocks(uow: FakeUnitOfWork) -> dict[int, int]:
    return {p.id: p.stock for p in uow.products.list()}


# --- Tests du registre de stock ---


class TestCreateDelivery:
    def test_livraison_simple(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        [delivery_id] = bus.handle(commands.CreateDelivery(1, lignes((1, 2), (2, 1))))

        livraison = uow.deliveries.get(delivery_id)
        assert livraison.total_amount == Decimal("25.00")
        assert [(i.product_id, i.quantity, i.unit_price, i.subtotal) for i in livraison.items] == [
            (1, 2, Decimal("10.00"), Decimal("20.00")),
            (2, 1, Decimal("5.00"), Decimal("5.00")),
        ]
        assert stocks(uow) == {1: 3, 2: 2, 3: 2}
        assert uow.committed

    def test_les_notes_sont_conservées(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        [delivery_id] = bus.handle(commands.CreateDelivery(1, lignes((3, 1)), notes="Porte B"))

        assert uow.deliveries.get(delivery_id).notes == "Porte B"

    def test_stock_insuffisant_n_écrit_rien(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.InsufficientStock) as exc_info:
            bus.handle(commands.CreateDelivery(1, lignes((1, 6))))

        assert exc_info.value.context["product_id"] == 1
        assert exc_info.value.context["code"] == "A"
        assert stocks(uow) == {1: 5, 2: 3, 3: 2}
        assert uow.deliveries.list() == []
        assert not uow.committed

    def test_un_produit_inconnu_annule_toute_la_livraison(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.NotFound) as exc_info:
            bus.handle(commands.CreateDelivery(1, lignes((1, 1), (99, 1))))

        assert exc_info.value.context["product_id"] == 99
        assert stocks(uow) == {1: 5, 2: 3, 3: 2}
        assert uow.deliveries.list() == []

    def test_l_échec_d_une_ligne_au_milieu_ne_retire_rien(self):
        uow = boutique()
        uow.products.add(Product("D", "Produit D", Decimal("2.00"), "jardin", stock=9))
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.InsufficientStock):
            bus.handle(commands.CreateDelivery(1, lignes((1, 1), (2, 1), (3, 3), (4, 1))))

        assert stocks(uow) == {1: 5, 2: 3, 3: 2, 4: 9}
        assert not uow.committed

    def test_client_inconnu(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.NotFound) as exc_info:
            bus.handle(commands.CreateDelivery(42, lignes((1, 1))))

        assert exc_info.value.context == {"client_id": 42}
        assert stocks(uow)[1] == 5

    def test_aucune_ligne_est_refusé(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.InvalidInput):
            bus.handle(commands.CreateDelivery(1, ()))

    @pytest.mark.parametrize("quantité", [0, -2, True, 1.5, "3"])
    def test_quantité_invalide(self, quantité):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.InvalidInput):
            bus.handle(commands.CreateDelivery(1, lignes((1, quantité))))

        assert stocks(uow)[1] == 5

    def test_les_lignes_répétées_sont_cumulées_pour_le_contrôle_du_stock(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.InsufficientStock):
            bus.handle(commands.CreateDelivery(1, lignes((2, 2), (2, 2))))

        assert stocks(uow)[2] == 3

    def test_vider_exactement_le_stock_est_permis(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        bus.handle(commands.CreateDelivery(1, lignes((3, 2))))

        assert stocks(uow)[3] == 0


class TestOrdreDesVérifications:
    def test_aucune_ligne_avant_client_inconnu(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.InvalidInput):
            bus.handle(commands.CreateDelivery(42, ()))

    def test_client_inconnu_avant_produit_inconnu(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.NotFound) as exc_info:
            bus.handle(commands.CreateDelivery(42, lignes((99, 1))))

        assert "client_id" in exc_info.value.context

    def test_produit_inconnu_avant_quantité_invalide(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.NotFound):
            bus.handle(commands.CreateDelivery(1, lignes((1, 0), (99, 1))))

    def test_quantité_invalide_avant_stock_insuffisant(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.InvalidInput):
            bus.handle(commands.CreateDelivery(1, lignes((1, 100), (2, 0))))


class TestVerrouillage:
    def test_les_verrous_sont_pris_par_id_croissant(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        bus.handle(commands.CreateDelivery(1, lignes((3, 1), (1, 1), (2, 1), (3, 1))))

        assert uow.products.lock_requests == [[1, 2, 3]]


class TestCreateOrder:
    def test_commande_en_attente_avec_total(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        [order_id] = bus.handle(commands.CreateOrder(1, lignes((1, 1), (3, 2))))

        commande = uow.orders.get(order_id)
        assert commande.status == "pending"
        assert commande.total == Decimal("12.00")
        assert stocks(uow) == {1: 4, 2: 3, 3: 0}

    def test_lignes_du_même_produit_fusionnées(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        [order_id] = bus.handle(commands.CreateOrder(1, lignes((2, 1), (2, 2))))

        commande = uow.orders.get(order_id)
        assert [(i.product_id, i.quantity) for i in commande.items] == [(2, 3)]
        assert stocks(uow)[2] == 0

    def test_stock_insuffisant(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.InsufficientStock):
            bus.handle(commands.CreateOrder(1, lignes((2, 4))))

        assert uow.orders.list() == []


class TestStockDepleted:
    def test_rupture_de_stock_journalisée(self, caplog):
        bus = bootstrap_test_bus(boutique())

        with caplog.at_level(logging.WARNING, logger="retail.service_layer.handlers"):
            bus.handle(commands.CreateDelivery(1, lignes((3, 2))))

        assert "Rupture de stock pour le produit C" in caplog.text


# --- Tests du stock ---


class TestStock:
    def test_fixer_le_stock(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        assert bus.handle(commands.SetStock(1, 42)) == [42]
        assert stocks(uow)[1] == 42

    def test_stock_négatif_refusé(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.InvalidInput):
            bus.handle(commands.SetStock(1, -1))

        assert not uow.committed

    def test_ajuster_le_stock(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        assert bus.handle(commands.AdjustStock(1, 3)) == [8]
        assert bus.handle(commands.AdjustStock(1, -100)) == [0]

    def test_ajuster_un_produit_inconnu(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.NotFound):
            bus.handle(commands.AdjustStock(99, 1))


# --- Tests du catalogue ---


class TestProducts:
    def test_créer_un_produit(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        [product_id] = bus.handle(
            commands.CreateProduct("D", "Produit D", Decimal("3.50"), "jardin", stock=4)
        )

        assert uow.products.get(product_id).code == "D"
        assert uow.committed

    def test_code_en_double(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.Conflict):
            bus.handle(commands.CreateProduct("A", "Copie", Decimal("1.00"), "maison"))

        assert not uow.committed

    def test_stock_initial_négatif(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.InvalidInput):
            bus.handle(commands.CreateProduct("D", "Produit D", Decimal("1.00"), "maison", stock=-1))

    def test_modifier_un_produit(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        bus.handle(commands.UpdateProduct(1, {"name": "Lampe", "price": Decimal("12.00")}))

        produit = uow.products.get(1)
        assert (produit.name, produit.price) == ("Lampe", Decimal("12.00"))

    def test_la_modification_générique_refuse_le_stock(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.InvalidInput):
            bus.handle(commands.UpdateProduct(1, {"stock": 999}))

        assert stocks(uow)[1] == 5
        assert not uow.committed

    def test_modifier_vers_un_code_existant(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.Conflict):
            bus.handle(commands.UpdateProduct(1, {"code": "B"}))

    def test_champ_inconnu(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.InvalidInput, match="couleur"):
            bus.handle(commands.UpdateProduct(1, {"couleur": "rouge"}))

    def test_le_prix_modifié_ne_change_pas_les_livraisons_passées(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)
        [delivery_id] = bus.handle(commands.CreateDelivery(1, lignes((1, 1))))

        bus.handle(commands.UpdateProduct(1, {"price": Decimal("99.00")}))

        livraison = uow.deliveries.get(delivery_id)
        assert livraison.items[0].unit_price == Decimal("10.00")
        assert livraison.total_amount == Decimal("10.00")

    def test_supprimer_un_produit(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        bus.handle(commands.DeleteProduct(3))

        assert uow.products.get(3) is None

    def test_un_produit_livré_n_est_pas_supprimable(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)
        bus.handle(commands.CreateDelivery(1, lignes((3, 1))))

        with pytest.raises(errors.Conflict):
            bus.handle(commands.DeleteProduct(3))

        assert uow.products.get(3) is not None


# --- Tests des clients ---


class TestClients:
    def test_créer_un_client(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        [client_id] = bus.handle(commands.CreateClient("Bob", "bob@example.com", phone="0600"))

        assert uow.clients.get(client_id).phone == "0600"

    def test_email_en_double(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.Conflict):
            bus.handle(commands.CreateClient("Autre Alice", "alice@example.com"))

    def test_modifier_un_client_inconnu(self):
        bus = bootstrap_test_bus(boutique())

        with pytest.raises(errors.NotFound):
            bus.handle(commands.UpdateClient(99, {"name": "X"}))

    def test_modifier_vers_un_email_existant(self):
        uow = boutique()
        uow.clients.add(Client("Bob", "bob@example.com"))
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.Conflict):
            bus.handle(commands.UpdateClient(2, {"email": "alice@example.com"}))

    def test_supprimer_un_client_sans_historique(self):
        uow = boutique()
        bus = bootstrap_test_bus(uow)

        bus.handle(commands.DeleteClient(1))

        assert uow.clients.get(1) is None

    def test_un_client_avec_livraisons_n_est_pas_supprimable(self):
        uow = boutique()
        uow.deliveries.add(Delivery(client_id=1))
        bus = bootstrap_test_bus(uow)

        with pytest.raises(errors.Conflict):
            bus.handle(commands.DeleteClient(1))


# --- Tests des utilisateurs ---


class TestRegisterUser:
    def test_le_mot_de_passe_est_haché(self):
        uow = FakeUnitOfWork()
        bus = bootstrap_test_bus(uow)

        [user_id] = bus.handle(commands.RegisterUser("alice", "alice@example.com", "s3cret"))

        user = uow.users.get(user_id)
        assert user.password_hash != "s3cret"
        assert check_password_hash(user.password_hash, "s3cret")
        assert user.role == User.STAFF

    def test_rôle_inconnu(self):
        bus = bootstrap_test_bus()

        with pytest.raises(errors.InvalidInput):
            bus.handle(commands.RegisterUser("alice", "alice@example.com", "pw", role="root"))

    def test_nom_d_utilisateur_en_double(self):
        bus = bootstrap_test_bus()
        bus.handle(commands.RegisterUser("alice", "alice@example.com", "pw"))

        with pytest.raises(errors.Conflict):
            bus.handle(commands.RegisterUser("alice", "autre@example.com", "pw"))
