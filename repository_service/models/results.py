"""Résultats renvoyés par le QueryExecutor et le moteur de statistiques."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel


@dataclass
class FacetTerm:
    term: Any
    total: int


@dataclass
class FacetResult:
    field: str
    terms: List[FacetTerm] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "terms": [{"term": t.term, "total": t.total} for t in self.terms]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FacetResult":
        return cls(
            field=data["field"],
            terms=[FacetTerm(term=t["term"], total=t["total"]) for t in data.get("terms", [])],
        )


@dataclass(frozen=True)
class Continuation:
    """
    Position de la page suivante.

    ``cursor_token`` est renseigné en pagination par curseur (scroll), ``page``
    en pagination par limite. La requête d'origine n'est jamais modifiée : la
    page suivante est calculée sur une copie.
    """
    query: Any
    cursor_token: Optional[str] = None
    page: Optional[int] = None
    total: int = 0


@dataclass
class FindResults:
    documents: List[Any] = field(default_factory=list)
    total: int = 0
    cursor_token: Optional[str] = None
    has_more: bool = False
    facets: List[FacetResult] = field(default_factory=list)
    continuation: Optional[Continuation] = None

    def __len__(self) -> int:
        return len(self.documents)

    def __iter__(self):
        return iter(self.documents)

    def to_cache_payload(self) -> Dict[str, Any]:
        """Représentation JSON du résultat ; la continuation n'en fait pas partie."""
        return {
            "documents": [
                doc.model_dump(mode="json") if isinstance(doc, BaseModel) else doc
                for doc in self.documents
            ],
            "total": self.total,
            "cursor_token": self.cursor_token,
            "has_more": self.has_more,
            "facets": [facet.to_dict() for facet in self.facets],
        }

    @classmethod
    def from_cache_payload(
        cls, payload: Dict[str, Any], document_model: Optional[Type[BaseModel]] = None
    ) -> "FindResults":
        documents = payload.get("documents", [])
        if document_model is not None:
            documents = [document_model.model_validate(doc) for doc in documents]
        return cls(
            documents=documents,
            total=payload.get("total", 0),
            cursor_token=payload.get("cursor_token"),
            has_more=payload.get("has_more", False),
            facets=[FacetResult.from_dict(f) for f in payload.get("facets", [])],
        )


@dataclass
class NumbersStatsResult:
    """Total + une valeur par agrégation demandée, dans l'ordre de la demande."""
    total: int = 0
    numbers: List[float] = field(default_factory=list)


@dataclass
class NumbersTermStatsItem:
    term: Any = None
    total: int = 0
    numbers: List[float] = field(default_factory=list)


@dataclass
class NumbersTermStatsResult(NumbersStatsResult):
    terms: List[NumbersTermStatsItem] = field(default_factory=list)


@dataclass
class NumbersTimelineItem:
    date: Optional[datetime] = None
    total: int = 0
    numbers: List[float] = field(default_factory=list)


@dataclass
class NumbersTimelineStatsResult(NumbersStatsResult):
    timeline: List[NumbersTimelineItem] = field(default_factory=list)
