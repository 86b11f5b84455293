"""
Tests d'intégration des Repositories avec SQLite en mémoire.

Ces tests vérifient que le mapping ORM fonctionne correctement :
- Sauvegarder et recharger un Produit, une Livraison avec ses lignes
- Le verrouillage charge les produits par id croissant
- Les requêtes de référence (produit utilisé, historique client)
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from retail.adapters import repository
from retail.domain.model import Client, Delivery, Order, Product


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


def créer_produit(code: str, stock: int = 10, prix: str = "4.20") -> Product:
    return Product(code=code, name=f"Produit {code}", price=Decimal(prix), category="maison", stock=stock)


class TestSqlAlchemyProductRepository:
    def test_sauvegarder_et_recharger_un_produit(self, session):
        repo = repository.SqlAlchemyProductRepository(session)
        repo.add(créer_produit("LAMPE", stock=3, prix="19.99"))
        session.commit()

        rechargé = repo.get_by_code("LAMPE")

        assert rechargé is not None
        assert rechargé.price == Decimal("19.99")
        assert rechargé.stock == 3
        assert rechargé.events == []

    def test_get_retourne_none_si_id_inexistant(self, session):
        assert repository.SqlAlchemyProductRepository(session).get(999) is None

    def test_lock_retourne_les_produits_par_id_croissant(self, session):
        repo = repository.SqlAlchemyProductRepository(session)
        for code in ("A", "B", "C"):
            repo.add(créer_produit(code))
        session.commit()

        verrouillés = repo.lock([3, 1, 999, 2, 1])

        assert [p.id for p in verrouillés] == [1, 2, 3]
        assert set(verrouillés) <= repo.seen

    def test_lock_relit_le_stock_en_base(self, session_factory, session):
        repo = repository.SqlAlchemyProductRepository(session)
        repo.add(créer_produit("A", stock=5))
        session.commit()
        produit = repo.get(1)
        session.rollback()

        autre = session_factory()
        autre.get(Product, 1).stock = 2
        autre.commit()
        autre.close()

        assert repo.lock([1])[0].stock == 2
        assert produit.stock == 2

    def test_code_unique(self, session):
        repo = repository.SqlAlchemyProductRepository(session)
        repo.add(créer_produit("A"))
        repo.add(créer_produit("A"))

        with pytest.raises(IntegrityError):
            session.commit()

    def test_is_referenced(self, session):
        repo = repository.SqlAlchemyProductRepository(session)
        client = Client("Alice", "alice@example.com")
        session.add(client)
        livré, libre = créer_produit("A"), créer_produit("B")
        repo.add(livré)
        repo.add(libre)
        session.flush()
        livraison = Delivery(client_id=client.id)
        livraison.add_item(livré, 1)
        session.add(livraison)
        session.commit()

        assert repo.is_referenced(livré.id)
        assert not repo.is_referenced(libre.id)


class TestSqlAlchemyDeliveryRepository:
    def test_une_livraison_survit_au_rechargement(self, session):
        client = Client("Alice", "alice@example.com")
        produit = créer_produit("A", stock=5, prix="2.50")
        session.add_all([client, produit])
        session.flush()
        repo = repository.SqlAlchemyDeliveryRepository(session)
        livraison = Delivery(client_id=client.id, notes="Quai 3")
        livraison.add_item(produit, 4)
        livraison.recompute_total()
        repo.add(livraison)
        session.commit()
        livraison_id, produit_id = livraison.id, produit.id
        session.expunge_all()

        rechargée = repo.get(livraison_id)

        assert rechargée.total_amount == Decimal("10.00")
        assert rechargée.notes == "Quai 3"
        [ligne] = rechargée.items
        assert (ligne.quantity, ligne.unit_price, ligne.subtotal) == (4, Decimal("2.50"), Decimal("10.00"))
        assert ligne.product.code == "A"
        assert session.get(Product, produit_id).stock == 1


class TestSqlAlchemyClientRepository:
    def test_get_by_email(self, session):
        repo = repository.SqlAlchemyClientRepository(session)
        repo.add(Client("Alice", "alice@example.com", phone="0102"))
        session.commit()

        assert repo.get_by_email("alice@example.com").phone == "0102"
        assert repo.get_by_email("inconnu@example.com") is None

    def test_has_history(self, session):
        repo = repository.SqlAlchemyClientRepository(session)
        acheteur, nouveau = Client("A", "a@example.com"), Client("B", "b@example.com")
        repo.add(acheteur)
        repo.add(nouveau)
        session.flush()
        session.add(Order(client_id=acheteur.id))
        session.commit()

        assert repo.has_history(acheteur.id)
        assert not repo.has_history(nouveau.id)

    def test_seen_trace_les_entités(self, session):
        repo = repository.SqlAlchemyClientRepository(session)
        client = Client("Alice", "alice@example.com")

        repo.add(client)
        session.commit()

        assert client in repo.seen
        repo2 = repository.SqlAlchemyClientRepository(session)
        repo2.get(client.id)
        assert len(repo2.seen) == 1
