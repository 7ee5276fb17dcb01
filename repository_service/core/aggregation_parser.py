"""
Parser du mini-langage d'agrégations

    directive (',' directive)*
    directive := type ':' field (':' extra)?
    type      := avg | distinct | sum | min | max | last | term

Exemples : ``avg:data.score``, ``min:score:10``, ``term:status:-deleted``.
Une directive invalide invalide toute la requête : aucune liste partielle n'est
renvoyée.
"""

from typing import Optional

from repository_service.models.aggregations import (
    FieldAggregation,
    FieldAggregationsResult,
    FieldAggregationType,
    TermFieldAggregation,
)

DATA_PREFIX = "data."
REFERENCE_PREFIX = "ref."


class FieldAggregationProcessor:
    """Transforme une chaîne ``type:field[:extra],...`` en FieldAggregation typées."""

    def process(self, query: Optional[str]) -> FieldAggregationsResult:
        result = FieldAggregationsResult(is_valid=True)
        if not query:
            return result

        for aggregation in (part for part in query.split(",") if part):
            parts = [part for part in aggregation.split(":") if part]
            if len(parts) < 2 or len(parts) > 3:
                return FieldAggregationsResult.invalid_with_message(f"Invalid aggregation: {aggregation}")

            type_name = parts[0].lower().strip()
            field = parts[1].lower().strip()
            if not type_name or not field:
                return FieldAggregationsResult.invalid_with_message(
                    f"Invalid type: {type_name} or field: {field}"
                )

            field = self.resolve_field(field)

            field_type = FieldAggregationType.from_name(type_name)
            if field_type is None:
                return FieldAggregationsResult.invalid_with_message(f"Invalid type: {type_name}")

            extra = parts[2].strip() if len(parts) > 2 and parts[2].strip() else None
            if field_type == FieldAggregationType.TERM:
                term = TermFieldAggregation(field=field)
                if extra is not None:
                    if extra.startswith("-"):
                        term.exclude_pattern = extra[1:].strip()
                    else:
                        term.include_pattern = extra
                result.add(term)
            else:
                result.add(
                    FieldAggregation(
                        type=field_type,
                        field=field,
                        default_value=self.parse_default_value(extra),
                    )
                )

        return result

    @staticmethod
    def resolve_field(field: str) -> str:
        """Réécrit les espaces de noms dynamiques (``data.`` numérique, ``ref.`` référence)."""
        if field.startswith(DATA_PREFIX):
            return f"idx.{field[len(DATA_PREFIX):]}-n"
        if field.startswith(REFERENCE_PREFIX):
            return f"idx.{field[len(REFERENCE_PREFIX):]}-r"
        return field

    @staticmethod
    def parse_default_value(value: Optional[str]) -> Optional[int]:
        # Texte non entier : pas de valeur par défaut, sans erreur
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None


_default_processor = FieldAggregationProcessor()


def parse_aggregations(query: Optional[str]) -> FieldAggregationsResult:
    return _default_processor.process(query)
