"""
Events du domaine.

Les events sont des faits passés, traités dans le processus
par le message bus. Rien n'est publié vers l'extérieur.
"""

from dataclasses import dataclass


class Event:
    """Classe de base pour tous les events du domaine."""
    pass


@dataclass(frozen=True)
class StockDepleted(Event):
    """Le stock d'un produit vient de tomber à zéro."""

    product_id: int
    code: str
