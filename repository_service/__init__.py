"""
Repository Service - Couche d'accès aux données Elasticsearch
=============================================================

Couche générique placée devant le cluster de recherche.

Modules principaux:
- core.query_executor: exécution des requêtes avec cache, pagination et scroll
- core.query_cache: cache des résultats de requêtes et invalidation
- core.aggregation_parser: parsing du mini-langage d'agrégations ("avg:field,...")
- core.aggregations / core.stats: statistiques numériques, termes et timelines
- core.index_manager: versions d'index, alias et déclenchement des reindexations
- clients: clients Elasticsearch, cache, verrou distribué et file de travail
- config: configuration du service
"""

__version__ = "1.0.0"
__title__ = "Repository Service"
__description__ = "Couche d'accès aux données avec cache, statistiques et cycle de vie des index"
