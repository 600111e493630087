"""
Data Ingestion Module
"""
from .batch_loader import BatchFileConfig, BatchLoad, BatchLoader, LoadResult

__all__ = [
    "BatchFileConfig",
    "BatchLoad",
    "BatchLoader",
    "LoadResult",
]
