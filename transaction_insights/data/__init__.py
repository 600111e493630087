"""
Data Generation Module
"""
from .generators import CatalogGenerator, DataGenerator, TransactionGenerator, to_export_layout

__all__ = [
    "CatalogGenerator",
    "DataGenerator",
    "TransactionGenerator",
    "to_export_layout",
]
