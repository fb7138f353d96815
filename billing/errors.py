from __future__ import annotations


class BillingError(Exception):
    """Base de toutes les erreurs métier de la facturation."""


class Unauthorized(BillingError):
    """Aucun opérateur connecté pour une opération qui en exige un."""

    def __init__(self, message: str = "An operator must be logged in for this operation"):
        super().__init__(message)


class ValidationError(BillingError, ValueError):
    """Nom/prix produit invalide, quantité non positive, facture vide..."""


class InvalidState(BillingError):
    pass


class RemoteWriteFailure(BillingError):
    pass


class RemoteReadFailure(BillingError):
    pass


class FetchError(RemoteReadFailure):
    def __init__(self, message: str = "Failed to fetch invoice history."):
        super().__init__(message)
