"""
Modèles du Repository Service
"""

from .aggregations import (
    FieldAggregation,
    FieldAggregationsResult,
    FieldAggregationType,
    SortOrder,
    TermFieldAggregation,
)
from .indexes import IndexDescriptor, IndexKind, IndexType, ParentMap, ReindexWorkItem
from .queries import (
    CacheOptions,
    DateRange,
    FacetField,
    PagingOptions,
    Query,
    SortField,
    as_cacheable,
    as_date_rangeable,
    as_facetable,
    as_pageable,
)
from .results import (
    Continuation,
    FacetResult,
    FacetTerm,
    FindResults,
    NumbersStatsResult,
    NumbersTermStatsItem,
    NumbersTermStatsResult,
    NumbersTimelineItem,
    NumbersTimelineStatsResult,
)

__all__ = [
    "FieldAggregation",
    "FieldAggregationsResult",
    "FieldAggregationType",
    "SortOrder",
    "TermFieldAggregation",
    "IndexDescriptor",
    "IndexKind",
    "IndexType",
    "ParentMap",
    "ReindexWorkItem",
    "CacheOptions",
    "DateRange",
    "FacetField",
    "PagingOptions",
    "Query",
    "SortField",
    "as_cacheable",
    "as_date_rangeable",
    "as_facetable",
    "as_pageable",
    "Continuation",
    "FacetResult",
    "FacetTerm",
    "FindResults",
    "NumbersStatsResult",
    "NumbersTermStatsItem",
    "NumbersTermStatsResult",
    "NumbersTimelineItem",
    "NumbersTimelineStatsResult",
]
