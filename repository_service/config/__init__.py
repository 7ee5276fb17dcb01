"""
Module de configuration du Repository Service
Expose les settings et quelques helpers d'accès rapide
"""

from .settings import Settings, settings

__all__ = [
    "settings",
    "Settings",
    "get_elasticsearch_config",
    "get_cache_config",
    "is_production",
    "validate_config",
]


def get_elasticsearch_config():
    """Retourne la configuration Elasticsearch"""
    return settings.get_elasticsearch_config()


def get_cache_config():
    """Retourne la configuration cache"""
    return settings.get_cache_config()


def is_production():
    """Vérifie si on est en production"""
    return settings.is_production()


def validate_config():
    """Valide la configuration au démarrage du service"""
    return settings.validate_config()
