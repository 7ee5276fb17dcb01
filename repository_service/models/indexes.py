"""Descripteurs d'index versionnés et éléments de travail de reindexation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class IndexKind(str, Enum):
    """Nature de l'index : physique unique ou famille d'index via template"""
    PLAIN = "plain"
    TEMPLATED = "templated"


@dataclass
class IndexType:
    """Type de document hébergé par l'index (relation parent/enfant optionnelle)."""
    name: str
    parent_path: Optional[str] = None


@dataclass
class ParentMap:
    type: str
    parent_path: str

    def to_dict(self) -> Dict[str, str]:
        return {"Type": self.type, "ParentPath": self.parent_path}


@dataclass
class IndexDescriptor:
    """
    Index logique exposé derrière un alias stable.

    ``definition`` contient le corps envoyé au store : settings/mappings pour
    un index PLAIN, corps du template (sans ``index_patterns`` ni ``aliases``)
    pour un index TEMPLATED.
    """
    alias_name: str
    version: int
    kind: IndexKind = IndexKind.PLAIN
    definition: Dict[str, Any] = field(default_factory=dict)
    types: List[IndexType] = field(default_factory=list)

    def __post_init__(self):
        if self.version < 0:
            raise ValueError(f"Index version must be >= 0, got {self.version}")

    @property
    def versioned_name(self) -> str:
        return f"{self.alias_name}-v{self.version}"

    @property
    def is_templated(self) -> bool:
        return self.kind == IndexKind.TEMPLATED

    @property
    def template_pattern(self) -> str:
        return f"{self.versioned_name}-*"

    def parent_maps(self) -> List[ParentMap]:
        return [
            ParentMap(type=t.name, parent_path=t.parent_path)
            for t in self.types
            if t.parent_path
        ]


@dataclass
class ReindexWorkItem:
    """Demande de reindexation consommée par un job externe."""
    old_index: str
    new_index: str
    alias: str
    delete_old: bool = True
    parent_maps: List[ParentMap] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "OldIndex": self.old_index,
            "NewIndex": self.new_index,
            "Alias": self.alias,
            "DeleteOld": self.delete_old,
            "ParentMaps": [m.to_dict() for m in self.parent_maps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReindexWorkItem":
        return cls(
            old_index=data["OldIndex"],
            new_index=data["NewIndex"],
            alias=data["Alias"],
            delete_old=data.get("DeleteOld", True),
            parent_maps=[
                ParentMap(type=m["Type"], parent_path=m["ParentPath"])
                for m in data.get("ParentMaps", [])
            ],
        )
