"""
Classe de base pour les clients HTTP du Repository Service
Fournit la gestion de session aiohttp, les métriques et le health check communs

Aucun retry automatique : une politique de retry éventuelle est une
responsabilité de l'appelant.
"""

import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import aiohttp

from repository_service.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ClientStatus(str, Enum):
    """Statuts possibles d'un client de service"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class BaseClient(ABC):
    """
    Classe de base pour les clients de services externes

    Responsabilités principales:
    - Gestion de la session HTTP asynchrone aiohttp (réutilisée entre requêtes)
    - Métriques standardisées (latence, taux d'erreur, requêtes lentes)
    - Statut de santé dérivé du taux d'erreur
    """

    slow_request_threshold = 1.0

    def __init__(
        self,
        base_url: str,
        service_name: str,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[aiohttp.BasicAuth] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_name = service_name
        self.timeout = timeout
        self.headers = headers or {}
        self.auth = auth

        self.status = ClientStatus.UNKNOWN
        self.last_error: Optional[str] = None

        # Métriques de performance
        self.request_count = 0
        self.error_count = 0
        self.total_response_time = 0.0
        self.slow_request_count = 0

        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(f"Initializing {service_name} client: {self.base_url}")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Démarre le client et initialise la session HTTP"""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers=self.headers,
                auth=self.auth,
            )
            logger.info(f"{self.service_name} client started")

    async def close(self):
        """Ferme le client et nettoie les ressources"""
        if self._session is not None:
            if not self._session.closed:
                await self._session.close()
            self._session = None
            logger.info(f"{self.service_name} client closed")

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(f"{self.service_name} client not started. Call start() first.")
        return self._session

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "request",
    ) -> T:
        """
        Exécute une opération une seule fois en enregistrant les métriques.

        Les exceptions de l'opération sont propagées telles quelles.
        """
        start_time = time.time()
        try:
            result = await operation()
        except Exception as e:
            self._record_error(str(e), operation_name)
            raise
        self._record_success(time.time() - start_time, operation_name)
        return result

    def _record_success(self, response_time: float, operation_name: str):
        self.request_count += 1
        self.total_response_time += response_time

        if response_time > self.slow_request_threshold:
            self.slow_request_count += 1
            logger.warning(f"Slow {self.service_name} {operation_name}: {response_time:.3f}s")

        self.status = ClientStatus.HEALTHY
        self.last_error = None

    def _record_error(self, error_message: str, operation_name: str):
        self.request_count += 1
        self.error_count += 1
        self.last_error = error_message
        logger.warning(f"{self.service_name} {operation_name} failed: {error_message}")

        error_rate = self.error_count / self.request_count if self.request_count > 0 else 0
        if error_rate > 0.5:
            self.status = ClientStatus.UNHEALTHY
        elif error_rate > 0.1:
            self.status = ClientStatus.DEGRADED
        else:
            self.status = ClientStatus.HEALTHY

    async def health_check(self) -> Dict[str, Any]:
        """Vérification de santé : métriques locales + test spécifique au service"""
        health_info = {
            "service_name": self.service_name,
            "base_url": self.base_url,
            "last_error": self.last_error,
            "metrics": self.get_metrics(),
            "timestamp": time.time(),
        }
        try:
            health_info.update(await self._perform_health_check())
        except Exception as e:
            health_info["status"] = ClientStatus.UNHEALTHY.value
            health_info["health_check_error"] = str(e)
            logger.warning(f"{self.service_name} health check failed: {e}")
        return health_info

    @abstractmethod
    async def _perform_health_check(self) -> Dict[str, Any]:
        """Vérification de santé spécifique au service"""

    def get_metrics(self) -> Dict[str, Any]:
        successful_requests = self.request_count - self.error_count
        avg_response_time = (
            self.total_response_time / successful_requests if successful_requests > 0 else 0.0
        )
        error_rate = self.error_count / self.request_count if self.request_count > 0 else 0

        return {
            "request_count": self.request_count,
            "error_count": self.error_count,
            "slow_request_count": self.slow_request_count,
            "error_rate": round(error_rate, 3),
            "average_response_time_ms": round(avg_response_time * 1000, 2),
            "status": self.status.value,
        }

    def reset_metrics(self):
        self.request_count = 0
        self.error_count = 0
        self.total_response_time = 0.0
        self.slow_request_count = 0
        logger.info(f"{self.service_name} metrics reset")


__all__ = ["BaseClient", "ClientStatus"]
