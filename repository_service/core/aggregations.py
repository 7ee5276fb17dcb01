"""
Construction et lecture des agrégations numériques
==================================================

Traduit une liste de ``FieldAggregation`` en agrégations Elasticsearch, puis
relit les réponses sous forme d'une liste de nombres alignée 1:1 sur la
demande. Contient aussi le calcul de l'intervalle adaptatif des timelines.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from repository_service.models.aggregations import (
    FieldAggregation,
    FieldAggregationType,
    TermFieldAggregation,
)
from .exceptions import AggregationConfigurationError, ValidationError

DEFAULT_PRECISION_THRESHOLD = 100

_METRIC_AGGREGATIONS = {
    FieldAggregationType.AVERAGE: "avg",
    FieldAggregationType.SUM: "sum",
    FieldAggregationType.MIN: "min",
    FieldAggregationType.MAX: "max",
}

_SECONDS_PER_DAY = 86400
_SECONDS_PER_HOUR = 3600
_SECONDS_PER_MINUTE = 60
_MIN_BUCKET_SECONDS = 15


# === CONSTRUCTION ===

def _value_source(field: FieldAggregation) -> Dict[str, Any]:
    script = field.default_value_script
    if script is not None:
        return {"script": {"source": script}}
    return {"field": field.field}


def build_aggregations(
    fields: Sequence[FieldAggregation],
    *,
    timestamp_field: str,
    precision_threshold: int = DEFAULT_PRECISION_THRESHOLD,
    terms_size: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Construit le bloc ``aggs`` d'une requête, une entrée par ``field.key``.

    ``last`` est servi par un ``top_hits`` de taille 1 trié sur le champ
    d'horodatage décroissant : la valeur la plus récente dans le temps.
    """
    aggs: Dict[str, Any] = {}

    for field in fields:
        if field.type in _METRIC_AGGREGATIONS:
            aggs[field.key] = {_METRIC_AGGREGATIONS[field.type]: _value_source(field)}

        elif field.type == FieldAggregationType.DISTINCT:
            cardinality = _value_source(field)
            cardinality["precision_threshold"] = precision_threshold
            aggs[field.key] = {"cardinality": cardinality}

        elif field.type == FieldAggregationType.TERM:
            if not isinstance(field, TermFieldAggregation):
                raise AggregationConfigurationError(
                    field.type, "term aggregation must be of type TermFieldAggregation"
                )
            terms: Dict[str, Any] = {"field": field.field}
            if terms_size:
                terms["size"] = terms_size
            if field.exclude_pattern:
                terms["exclude"] = field.exclude_pattern
            if field.include_pattern:
                terms["include"] = field.include_pattern
            aggs[field.key] = {"terms": terms}

        elif field.type == FieldAggregationType.LAST:
            aggs[field.key] = {
                "top_hits": {
                    "size": 1,
                    "sort": [{timestamp_field: {"order": "desc"}}],
                    "_source": False,
                    "docvalue_fields": [field.field],
                }
            }

        else:
            raise AggregationConfigurationError(field.type)

    return aggs


def build_term_sort(fields: Sequence[FieldAggregation]) -> Optional[List[Dict[str, str]]]:
    """Ordre des buckets de termes ; ``None`` = ordre par défaut du store (doc_count desc)."""
    order = [{field.key: field.sort_order.value} for field in fields if field.sort_order is not None]
    return order or None


# === LECTURE ===

def _metric_value(aggregation: Dict[str, Any]) -> float:
    value = aggregation.get("value")
    return float(value) if value is not None else 0.0


def _last_value(aggregation: Dict[str, Any], field: FieldAggregation) -> float:
    hits = (aggregation.get("hits") or {}).get("hits") or []
    if hits:
        values = (hits[0].get("fields") or {}).get(field.field) or []
        if values and isinstance(values[0], (int, float)) and not isinstance(values[0], bool):
            return float(values[0])
    if field.default_value is not None:
        return float(field.default_value)
    return 0.0


def get_results(aggregations: Optional[Dict[str, Any]], fields: Sequence[FieldAggregation]) -> List[float]:
    """
    Un nombre par agrégation demandée, dans l'ordre de la demande.

    Une agrégation absente de la réponse vaut 0 ; la liste renvoyée a toujours
    la longueur de ``fields``.
    """
    aggregations = aggregations or {}
    results: List[float] = []

    for field in fields:
        aggregation = aggregations.get(field.key) or {}

        if field.type in _METRIC_AGGREGATIONS or field.type == FieldAggregationType.DISTINCT:
            results.append(_metric_value(aggregation))
        elif field.type == FieldAggregationType.TERM:
            buckets = aggregation.get("buckets") or []
            results.append(float(buckets[0].get("doc_count", 0)) if buckets else 0.0)
        elif field.type == FieldAggregationType.LAST:
            results.append(_last_value(aggregation, field))
        else:
            raise AggregationConfigurationError(field.type)

    return results


# === TIMELINE ===

def get_interval(
    start: datetime, end: datetime, desired_points: int = 100
) -> Tuple[str, int]:
    """
    Intervalle de bucket pour environ ``desired_points`` points entre ``start`` et ``end``.

    L'unité est choisie parmi jours, heures, minutes puis multiples de 15
    secondes (arrondi au pair le plus proche). Retourne la chaîne d'intervalle
    (``"2m"``, ``"3h"``...) et sa durée en secondes.
    """
    if desired_points <= 0:
        raise ValidationError("desired_points must be positive", field="desired_points")

    block = (end - start).total_seconds() / desired_points

    if block > _SECONDS_PER_DAY:
        days = round(block / _SECONDS_PER_DAY)
        return f"{days}d", days * _SECONDS_PER_DAY
    if block > _SECONDS_PER_HOUR:
        hours = round(block / _SECONDS_PER_HOUR)
        return f"{hours}h", hours * _SECONDS_PER_HOUR
    if block > _SECONDS_PER_MINUTE:
        minutes = round(block / _SECONDS_PER_MINUTE)
        return f"{minutes}m", minutes * _SECONDS_PER_MINUTE

    seconds = round(block / _MIN_BUCKET_SECONDS) * _MIN_BUCKET_SECONDS
    if seconds < _MIN_BUCKET_SECONDS:
        seconds = _MIN_BUCKET_SECONDS
    return f"{seconds}s", seconds


def hours_and_minutes(offset: timedelta) -> str:
    """Décalage horaire au format ``+hh:mm`` / ``-hh:mm``."""
    total = int(offset.total_seconds())
    sign = "-" if total < 0 else "+"
    total = abs(total)
    return f"{sign}{total // 3600:02d}:{(total % 3600) // 60:02d}"


__all__ = [
    "build_aggregations",
    "build_term_sort",
    "get_results",
    "get_interval",
    "hours_and_minutes",
    "DEFAULT_PRECISION_THRESHOLD",
]
