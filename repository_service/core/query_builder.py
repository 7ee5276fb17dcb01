"""
Constructeur de requêtes Elasticsearch
======================================

Assemble la clause ``query`` et le corps ``_search`` à partir d'une ``Query``.
Les repositories concrets fournissent déjà leurs filtres ; cette classe ne fait
que les combiner dans un ``bool``.
"""

from typing import Any, Dict, List, Optional

from repository_service.models.queries import Query, as_date_rangeable, as_facetable
from repository_service.models.results import FacetResult, FacetTerm

FACET_AGGREGATION_PREFIX = "facet_"


class QueryBuilder:
    """Traduit une ``Query`` en corps de requête Elasticsearch."""

    def __init__(self, id_field: str = "id", default_facet_size: int = 25):
        self.id_field = id_field
        self.default_facet_size = default_facet_size

    def build_query(self, query: Query) -> Dict[str, Any]:
        """Clause ``query`` (``match_all`` quand aucun critère n'est fourni)."""
        must: List[Dict[str, Any]] = []
        filters: List[Dict[str, Any]] = []

        if query.ids:
            filters.append({"ids": {"values": list(query.ids)}})

        filters.extend(query.filters)

        # Filtres système et utilisateur : syntaxe query_string, jamais scorés
        for expression in (query.system_filter, query.user_filter):
            if expression and expression.strip():
                filters.append({"query_string": {"query": expression, "default_operator": "AND"}})

        if query.search_query and query.search_query.strip():
            must.append({"query_string": {"query": query.search_query, "default_operator": "OR"}})

        for date_range in as_date_rangeable(query) or []:
            if not date_range.use_date_range:
                continue
            bounds: Dict[str, Any] = {}
            if date_range.start is not None:
                bounds["gte"] = date_range.start.isoformat()
            if date_range.end is not None:
                bounds["lte"] = date_range.end.isoformat()
            filters.append({"range": {date_range.field: bounds}})

        if not must and not filters:
            return {"match_all": {}}

        bool_query: Dict[str, Any] = {}
        if must:
            bool_query["must"] = must
        if filters:
            bool_query["filter"] = filters
        return {"bool": bool_query}

    def build_sort(self, query: Query) -> Optional[List[Dict[str, Any]]]:
        if not query.sort:
            return None
        return [{s.field: {"order": s.order.value}} for s in query.sort]

    def build_facets(self, query: Query) -> Dict[str, Any]:
        aggs = {}
        for facet in as_facetable(query) or []:
            aggs[f"{FACET_AGGREGATION_PREFIX}{facet.field}"] = {
                "terms": {"field": facet.field, "size": facet.size or self.default_facet_size}
            }
        return aggs

    def build_search_body(
        self,
        query: Query,
        *,
        size: Optional[int] = None,
        from_: Optional[int] = None,
        include_source: bool = True,
        include_facets: bool = True,
    ) -> Dict[str, Any]:
        """Corps complet d'un ``_search``."""
        body: Dict[str, Any] = {"query": self.build_query(query)}

        if size is not None:
            body["size"] = size
        if from_:
            body["from"] = from_

        sort = self.build_sort(query)
        if sort:
            body["sort"] = sort

        if not include_source:
            body["_source"] = False
        elif query.source_fields:
            body["_source"] = list(query.source_fields)

        if include_facets:
            facets = self.build_facets(query)
            if facets:
                body["aggs"] = facets

        return body

    def build_count_body(self, query: Query) -> Dict[str, Any]:
        return {"query": self.build_query(query)}

    @staticmethod
    def parse_facets(query: Query, aggregations: Optional[Dict[str, Any]]) -> List[FacetResult]:
        """Résultats de facettes dans l'ordre des champs demandés."""
        aggregations = aggregations or {}
        results = []
        for facet in as_facetable(query) or []:
            buckets = (aggregations.get(f"{FACET_AGGREGATION_PREFIX}{facet.field}") or {}).get("buckets") or []
            results.append(
                FacetResult(
                    field=facet.field,
                    terms=[FacetTerm(term=b.get("key"), total=b.get("doc_count", 0)) for b in buckets],
                )
            )
        return results


def get_total_hits(body: Dict[str, Any]) -> int:
    """Total de la réponse, quel que soit le format de ``hits.total``."""
    total = (body.get("hits") or {}).get("total", 0)
    if isinstance(total, dict):
        return int(total.get("value", 0))
    return int(total or 0)
