"""
Modèle de requête du Repository Service

Une requête déclare ses capacités (pagination, cache, plage de dates, facettes)
sous forme d'options facultatives : une capacité est présente ou absente, elle
n'est jamais déduite d'une hiérarchie de classes. Les helpers ``as_*`` en bas
de module détectent ces capacités sur n'importe quel objet.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from repository_service.config import settings
from .aggregations import SortOrder


class PagingOptions(BaseModel):
    """Capacité *Pageable*"""

    page: Optional[int] = Field(default=None, ge=1, description="Numéro de page (1 = première)")
    limit: Optional[int] = Field(default=None, ge=1, description="Nombre de documents par page")
    use_snapshot_paging: bool = Field(default=False, description="Pagination par curseur (scroll)")

    def should_use_limit(self) -> bool:
        return self.limit is not None or self.page is not None

    def get_limit(self) -> int:
        limit = self.limit if self.limit is not None else settings.DEFAULT_PAGE_LIMIT
        return min(limit, settings.MAX_PAGE_LIMIT)

    def get_page(self) -> int:
        return self.page or 1

    def get_skip(self) -> int:
        return (self.get_page() - 1) * self.get_limit()


class CacheOptions(BaseModel):
    """Capacité *Cacheable*"""

    cache_key: Optional[str] = None
    expires_in: Optional[int] = Field(default=None, gt=0, description="Durée de vie en secondes")
    expires_at: Optional[datetime] = None
    enabled: bool = True

    def should_use_cache(self) -> bool:
        return self.enabled and bool(self.cache_key and self.cache_key.strip())

    def get_cache_expiration(self) -> int:
        """Durée de vie de l'entrée en secondes (au moins 1)."""
        if self.expires_at is not None:
            expires_at = self.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            remaining = (expires_at - datetime.now(timezone.utc)).total_seconds()
            return max(1, int(remaining))
        if self.expires_in is not None:
            return self.expires_in
        return settings.DEFAULT_CACHE_EXPIRATION_SECONDS


class DateRange(BaseModel):
    """Capacité *DateRangeable* : champ date + bornes"""

    field: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def use_date_range(self) -> bool:
        return bool(self.field) and (self.start is not None or self.end is not None)

    def get_start_date(self) -> datetime:
        return self.start or datetime(1970, 1, 1, tzinfo=timezone.utc)

    def get_end_date(self) -> datetime:
        return self.end or datetime.now(timezone.utc)


class FacetField(BaseModel):
    field: str
    size: Optional[int] = Field(default=None, gt=0)


class SortField(BaseModel):
    field: str
    order: SortOrder = SortOrder.ASCENDING


class Query(BaseModel):
    """
    Requête passée au QueryExecutor.

    Les filtres (``filters``, ``system_filter``, ``user_filter``,
    ``search_query``) sont fournis par les repositories concrets ; cette
    couche se contente de les assembler.
    """

    ids: List[str] = Field(default_factory=list)
    filters: List[Dict[str, Any]] = Field(default_factory=list)
    system_filter: Optional[str] = None
    user_filter: Optional[str] = None
    search_query: Optional[str] = None
    sort: List[SortField] = Field(default_factory=list)
    indices: List[str] = Field(default_factory=list)
    source_fields: List[str] = Field(default_factory=list)

    paging: Optional[PagingOptions] = None
    cache: Optional[CacheOptions] = None
    date_ranges: Optional[List[DateRange]] = None
    facet_fields: Optional[List[FacetField]] = None

    # === Construction fluide ===

    def with_id(self, id: str) -> "Query":
        self.ids = [id]
        return self

    def with_ids(self, ids: List[str]) -> "Query":
        self.ids = list(ids)
        return self

    def with_filter(self, clause: Dict[str, Any]) -> "Query":
        self.filters.append(clause)
        return self

    def with_system_filter(self, system_filter: Optional[str]) -> "Query":
        self.system_filter = system_filter
        return self

    def with_user_filter(self, user_filter: Optional[str]) -> "Query":
        self.user_filter = user_filter
        return self

    def with_search_query(self, search_query: Optional[str]) -> "Query":
        self.search_query = search_query
        return self

    def with_sort(self, field: str, order: SortOrder = SortOrder.ASCENDING) -> "Query":
        self.sort.append(SortField(field=field, order=order))
        return self

    def with_indices(self, *indices: str) -> "Query":
        self.indices.extend(indices)
        return self

    def with_source_fields(self, *fields: str) -> "Query":
        self.source_fields.extend(fields)
        return self

    def with_paging(self, page: Optional[int] = None, limit: Optional[int] = None) -> "Query":
        paging = self.paging or PagingOptions()
        self.paging = paging.model_copy(update={"page": page, "limit": limit})
        return self

    def with_page(self, page: int) -> "Query":
        paging = self.paging or PagingOptions()
        self.paging = paging.model_copy(update={"page": page})
        return self

    def with_limit(self, limit: int) -> "Query":
        paging = self.paging or PagingOptions()
        self.paging = paging.model_copy(update={"limit": limit})
        return self

    def with_snapshot_paging(self, enabled: bool = True) -> "Query":
        paging = self.paging or PagingOptions()
        self.paging = paging.model_copy(update={"use_snapshot_paging": enabled})
        return self

    def with_cache_key(self, cache_key: str) -> "Query":
        cache = self.cache or CacheOptions()
        self.cache = cache.model_copy(update={"cache_key": cache_key})
        return self

    def with_expires_in(self, seconds: int) -> "Query":
        cache = self.cache or CacheOptions()
        self.cache = cache.model_copy(update={"expires_in": seconds})
        return self

    def with_expires_at(self, expires_at: datetime) -> "Query":
        cache = self.cache or CacheOptions()
        self.cache = cache.model_copy(update={"expires_at": expires_at})
        return self

    def with_date_range(
        self, field: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> "Query":
        self.date_ranges = (self.date_ranges or []) + [DateRange(field=field, start=start, end=end)]
        return self

    def with_facets(self, *fields: str, size: Optional[int] = None) -> "Query":
        self.facet_fields = (self.facet_fields or []) + [FacetField(field=f, size=size) for f in fields]
        return self


# === Détection des capacités ===

def as_pageable(query: Any) -> Optional[PagingOptions]:
    """Options de pagination déclarées par la requête, ``None`` sinon."""
    return getattr(query, "paging", None)


def as_cacheable(query: Any) -> Optional[CacheOptions]:
    return getattr(query, "cache", None)


def as_date_rangeable(query: Any) -> Optional[List[DateRange]]:
    ranges = getattr(query, "date_ranges", None)
    return ranges or None


def as_facetable(query: Any) -> Optional[List[FacetField]]:
    facets = getattr(query, "facet_fields", None)
    return facets or None


def get_indices(query: Any) -> List[str]:
    return list(getattr(query, "indices", None) or [])
