"""
Statistiques numériques du QueryExecutor
========================================

Trois formes de résultat, toutes calculées par une seule requête ``size: 0`` :
- globale (``NumbersStatsResult``)
- par terme (``NumbersTermStatsResult``, agrégation ``terms``)
- par intervalle de temps (``NumbersTimelineStatsResult``, agrégation ``timeline``)

Chaque liste ``numbers`` est alignée sur la liste d'agrégations demandée.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Sequence

from repository_service.models.aggregations import FieldAggregation
from repository_service.models.queries import as_date_rangeable
from repository_service.models.results import (
    NumbersStatsResult,
    NumbersTermStatsItem,
    NumbersTermStatsResult,
    NumbersTimelineItem,
    NumbersTimelineStatsResult,
)
from repository_service.utils.logging import get_logger
from .aggregation_parser import parse_aggregations
from .aggregations import build_aggregations, build_term_sort, get_interval, get_results, hours_and_minutes
from .exceptions import ValidationError
from .query_builder import get_total_hits

logger = get_logger(__name__)

TERMS_AGGREGATION = "terms"
TIMELINE_AGGREGATION = "timeline"
STATS_ERROR_MESSAGE = "Retrieving stats failed."


def _epoch_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class StatsMixin:
    """
    Statistiques numériques.

    Attend de la classe hôte : ``query_builder``, ``settings``,
    ``timestamp_field`` et ``_search(query, body, message=...)``.
    """

    def _build_field_aggregations(self, fields: Sequence[FieldAggregation]) -> Dict[str, Any]:
        return build_aggregations(
            fields,
            timestamp_field=self.timestamp_field,
            precision_threshold=self.settings.CARDINALITY_PRECISION_THRESHOLD,
            terms_size=self.settings.DEFAULT_TERMS_SIZE,
        )

    def _stats_body(self, query: Any, aggregations: Dict[str, Any]) -> Dict[str, Any]:
        body = self.query_builder.build_search_body(query, size=0, include_facets=False)
        body["track_total_hits"] = True
        if aggregations:
            body["aggs"] = aggregations
        return body

    async def _run_stats(self, query: Any, aggregations: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self._search(query, self._stats_body(query, aggregations), message=STATS_ERROR_MESSAGE)
        except Exception as e:
            logger.error(f"Retrieving stats failed: {e}")
            raise

    async def get_numbers_stats(self, query: Any, fields: Sequence[FieldAggregation]) -> NumbersStatsResult:
        fields = list(fields)
        response = await self._run_stats(query, self._build_field_aggregations(fields))
        return NumbersStatsResult(
            total=get_total_hits(response),
            numbers=get_results(response.get("aggregations"), fields),
        )

    async def get_numbers_term_stats(
        self, query: Any, term: str, fields: Sequence[FieldAggregation], max: int = 25
    ) -> NumbersTermStatsResult:
        if not term:
            raise ValidationError("A term field is required.", field="term")
        fields = list(fields)

        terms: Dict[str, Any] = {"field": term, "size": max}
        order = build_term_sort(fields)
        if order:
            terms["order"] = order
        terms_aggregation: Dict[str, Any] = {"terms": terms}
        nested = self._build_field_aggregations(fields)
        if nested:
            terms_aggregation["aggs"] = nested

        aggregations = self._build_field_aggregations(fields)
        aggregations[TERMS_AGGREGATION] = terms_aggregation
        response = await self._run_stats(query, aggregations)

        aggs = response.get("aggregations") or {}
        buckets = (aggs.get(TERMS_AGGREGATION) or {}).get("buckets") or []
        return NumbersTermStatsResult(
            total=get_total_hits(response),
            numbers=get_results(aggs, fields),
            terms=[
                NumbersTermStatsItem(
                    term=bucket.get("key"),
                    total=bucket.get("doc_count", 0),
                    numbers=get_results(bucket, fields),
                )
                for bucket in buckets
            ],
        )

    async def get_numbers_timeline_stats(
        self,
        query: Any,
        fields: Sequence[FieldAggregation],
        display_time_offset: Optional[timedelta] = None,
        desired_points: Optional[int] = None,
    ) -> NumbersTimelineStatsResult:
        date_range = next(iter(as_date_rangeable(query) or []), None)
        if date_range is None or not date_range.use_date_range:
            raise ValidationError("Query must contain a valid date range.", field="date_ranges")
        fields = list(fields)

        start = date_range.get_start_date()
        end = date_range.get_end_date()
        interval, _ = get_interval(start, end, desired_points or self.settings.DEFAULT_TIMELINE_POINTS)

        histogram: Dict[str, Any] = {
            "date_histogram": {
                "field": date_range.field,
                "fixed_interval": interval,
                "min_doc_count": 0,
                "time_zone": hours_and_minutes(display_time_offset or timedelta(0)),
                "extended_bounds": {"min": _epoch_millis(start), "max": _epoch_millis(end)},
            }
        }
        nested = self._build_field_aggregations(fields)
        if nested:
            histogram["aggs"] = nested

        aggregations = self._build_field_aggregations(fields)
        aggregations[TIMELINE_AGGREGATION] = histogram
        response = await self._run_stats(query, aggregations)

        aggs = response.get("aggregations") or {}
        buckets = (aggs.get(TIMELINE_AGGREGATION) or {}).get("buckets") or []
        return NumbersTimelineStatsResult(
            total=get_total_hits(response),
            numbers=get_results(aggs, fields),
            timeline=[
                NumbersTimelineItem(
                    date=datetime.fromtimestamp(bucket["key"] / 1000, tz=timezone.utc),
                    total=bucket.get("doc_count", 0),
                    numbers=get_results(bucket, fields),
                )
                for bucket in buckets
            ],
        )

    async def get_numbers_stats_from_request(self, query: Any, request: Optional[str]) -> NumbersStatsResult:
        """Parse ``request`` (``avg:field,...``) puis calcule les statistiques globales."""
        parsed = parse_aggregations(request)
        if not parsed.is_valid:
            raise ValidationError(parsed.message or "Invalid aggregation request.", field="aggregations")
        return await self.get_numbers_stats(query, parsed.aggregations)
