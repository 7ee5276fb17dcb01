"""Modèles des agrégations numériques par champ (mini-langage ``type:field``)."""

from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import List, Optional


class SortOrder(str, Enum):
    """Ordre de tri (champs de requête et buckets de termes)"""
    ASCENDING = "asc"
    DESCENDING = "desc"


class FieldAggregationType(str, Enum):
    """Types d'agrégation supportés par le mini-langage"""
    AVERAGE = "avg"
    DISTINCT = "distinct"
    SUM = "sum"
    MIN = "min"
    MAX = "max"
    LAST = "last"
    TERM = "term"

    @property
    def key_prefix(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: Optional[str]) -> Optional["FieldAggregationType"]:
        """Retourne le type correspondant au nom du DSL, ``None`` si inconnu."""
        if not name:
            return None
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


@dataclass(eq=False)
class FieldAggregation:
    """
    Agrégation numérique sur un champ.

    L'identité canonique est (type, field) : ``key`` et l'alignement positionnel
    des résultats n'en dépendent pas d'autre chose, donc ``__eq__`` et
    ``__hash__`` n'utilisent que ces deux attributs.
    """
    type: FieldAggregationType
    field: str
    default_value: Optional[int] = None
    sort_order: Optional[SortOrder] = None

    @property
    def key(self) -> str:
        return f"{self.type.key_prefix}_{self.field}".replace(".", "_")

    @property
    def default_value_script(self) -> Optional[str]:
        if self.default_value is None:
            return None
        return f"doc['{self.field}'].empty ? {self.default_value} : doc['{self.field}'].value"

    @property
    def identity(self):
        return (self.type, self.field)

    def __eq__(self, other) -> bool:
        if not isinstance(other, FieldAggregation):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)


@dataclass(eq=False)
class TermFieldAggregation(FieldAggregation):
    """Répartition par termes, avec motif d'inclusion ou d'exclusion."""
    type: FieldAggregationType = FieldAggregationType.TERM
    field: str = ""
    include_pattern: Optional[str] = None
    exclude_pattern: Optional[str] = None

    def __post_init__(self):
        self.type = FieldAggregationType.TERM


@dataclass
class FieldAggregationsResult:
    """Résultat du parsing d'une requête d'agrégations."""
    is_valid: bool = True
    message: Optional[str] = None
    aggregations: List[FieldAggregation] = dataclass_field(default_factory=list)

    @classmethod
    def invalid_with_message(cls, message: str) -> "FieldAggregationsResult":
        return cls(is_valid=False, message=message)

    def add(self, aggregation: FieldAggregation) -> None:
        """Ajoute l'agrégation si son identité (type, field) n'est pas déjà présente."""
        if aggregation not in self.aggregations:
            self.aggregations.append(aggregation)
