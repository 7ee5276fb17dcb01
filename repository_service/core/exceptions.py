"""
Exceptions du Repository Service

Définit les erreurs levées par l'exécution des requêtes, le moteur
d'agrégations et la gestion du cycle de vie des index.
"""

from typing import Any, Dict, Optional


class RepositoryError(Exception):
    """Erreur de base pour toute la couche d'accès aux données."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(RepositoryError):
    """Requête invalide, détectée avant tout appel au store."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field})
        self.field = field


class StoreRequestError(RepositoryError):
    """Réponse non valide du store (Elasticsearch)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
        error: Optional[Any] = None,
    ):
        super().__init__(message, {"status_code": status_code, "error": error})
        self.status_code = status_code
        self.cause = cause
        self.error = error
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def from_response(cls, response, message: Optional[str] = None) -> "StoreRequestError":
        """Construit l'erreur à partir d'une ``StoreResponse`` invalide."""
        text = message or f'Elasticsearch error code "{response.status}".'
        return cls(text, status_code=response.status, cause=response.exception, error=response.error)


class NotSupportedError(RepositoryError):
    """Opération non supportée par le type de document (ex: pas d'identité)."""


class AggregationConfigurationError(RepositoryError):
    """Type d'agrégation inconnu au moment de la construction de la requête."""

    def __init__(self, aggregation_type: Any, message: Optional[str] = None):
        super().__init__(
            message or f"Unknown FieldAggregation type: {aggregation_type}",
            {"aggregation_type": str(aggregation_type)},
        )
        self.aggregation_type = aggregation_type


__all__ = [
    "RepositoryError",
    "ValidationError",
    "StoreRequestError",
    "NotSupportedError",
    "AggregationConfigurationError",
]
