"""
Cœur du Repository Service : exécution des requêtes, cache, agrégations
numériques et cycle de vie des index.
"""

from .aggregation_parser import FieldAggregationProcessor, parse_aggregations
from .aggregations import build_aggregations, build_term_sort, get_interval, get_results, hours_and_minutes
from .exceptions import (
    AggregationConfigurationError,
    NotSupportedError,
    RepositoryError,
    StoreRequestError,
    ValidationError,
)
from .index_manager import IndexLifecycleManager, reindex_lock_name
from .query_builder import QueryBuilder
from .query_cache import QueryCache
from .query_executor import QueryExecutor
from .stats import StatsMixin

__all__ = [
    "FieldAggregationProcessor",
    "parse_aggregations",
    "build_aggregations",
    "build_term_sort",
    "get_interval",
    "get_results",
    "hours_and_minutes",
    "AggregationConfigurationError",
    "NotSupportedError",
    "RepositoryError",
    "StoreRequestError",
    "ValidationError",
    "IndexLifecycleManager",
    "reindex_lock_name",
    "QueryBuilder",
    "QueryCache",
    "QueryExecutor",
    "StatsMixin",
]
