# repository_service/config/settings.py
from typing import Any, Dict, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration du Repository Service (variables d'environnement + .env)"""

    # Elasticsearch
    ELASTICSEARCH_URL: str = "http://localhost:9200"
    ELASTICSEARCH_TIMEOUT: float = 10.0
    ELASTICSEARCH_USERNAME: Optional[str] = None
    ELASTICSEARCH_PASSWORD: Optional[str] = None

    # Redis (cache, verrous distribués, file de travail)
    REDIS_URL: str = ""
    REDIS_ENABLED: bool = True

    # Cache des requêtes
    CACHE_ENABLED: bool = True
    CACHE_PREFIX: str = "repo:"
    DEFAULT_CACHE_EXPIRATION_SECONDS: int = 300

    # Pagination
    SCROLL_KEEP_ALIVE: str = "2m"
    DEFAULT_PAGE_LIMIT: int = 10
    MAX_PAGE_LIMIT: int = 1000

    # Statistiques
    DEFAULT_TERMS_SIZE: int = 25
    DEFAULT_TIMELINE_POINTS: int = 100
    CARDINALITY_PRECISION_THRESHOLD: int = 100
    DEFAULT_TIMESTAMP_FIELD: str = "created_utc"

    # Cycle de vie des index
    REINDEX_LOCK_TTL_SECONDS: int = 60
    REINDEX_QUEUE_NAME: str = "work-items:reindex"

    # Divers
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("ELASTICSEARCH_URL")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def redis_configured(self) -> bool:
        return self.REDIS_ENABLED and bool(self.REDIS_URL)

    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() in ("development", "dev", "local")

    def get_elasticsearch_config(self) -> Dict[str, Any]:
        """Paramètres de connexion pour ElasticsearchClient"""
        config: Dict[str, Any] = {
            "url": self.ELASTICSEARCH_URL,
            "timeout": self.ELASTICSEARCH_TIMEOUT,
        }
        if self.ELASTICSEARCH_USERNAME:
            config["username"] = self.ELASTICSEARCH_USERNAME
            config["password"] = self.ELASTICSEARCH_PASSWORD or ""
        return config

    def get_cache_config(self) -> Dict[str, Any]:
        """Paramètres du cache de requêtes"""
        return {
            "enabled": self.CACHE_ENABLED and self.redis_configured,
            "url": self.REDIS_URL,
            "prefix": self.CACHE_PREFIX,
            "default_expiration_seconds": self.DEFAULT_CACHE_EXPIRATION_SECONDS,
        }

    def validate_config(self) -> List[str]:
        """Retourne la liste des incohérences de configuration (vide si OK)"""
        errors = []
        if not self.ELASTICSEARCH_URL.startswith(("http://", "https://")):
            errors.append("ELASTICSEARCH_URL doit commencer par http:// ou https://")
        if self.DEFAULT_PAGE_LIMIT > self.MAX_PAGE_LIMIT:
            errors.append("DEFAULT_PAGE_LIMIT ne peut pas être supérieur à MAX_PAGE_LIMIT")
        if self.DEFAULT_CACHE_EXPIRATION_SECONDS <= 0:
            errors.append("DEFAULT_CACHE_EXPIRATION_SECONDS doit être positif")
        if self.DEFAULT_TIMELINE_POINTS <= 0:
            errors.append("DEFAULT_TIMELINE_POINTS doit être positif")
        if self.REDIS_ENABLED and self.REDIS_URL and not self.REDIS_URL.startswith(("redis://", "rediss://")):
            errors.append("REDIS_URL doit commencer par redis:// ou rediss://")
        return errors


# Instance globale des settings
settings = Settings()
