"""
Data Transformation Module
"""
from .cleaners import CleaningStats, TransactionCleaner, build_clean_set
from .enrichers import DataEnricher, analytical_view, parse_sentinel
from .mappers import ReferenceMap, ReferenceMapper, build_brand_map, build_category_map
from .transformers import PipelineResult, TransactionPipeline

__all__ = [
    "CleaningStats",
    "TransactionCleaner",
    "build_clean_set",
    "DataEnricher",
    "analytical_view",
    "parse_sentinel",
    "ReferenceMap",
    "ReferenceMapper",
    "build_category_map",
    "build_brand_map",
    "PipelineResult",
    "TransactionPipeline",
]
