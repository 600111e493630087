"""
Database Module
"""
from .connection import close_database, create_tables, get_db, init_database
from .models import Base, CleanRebuildRecord, CleanTransactionRecord, RawTransactionRecord
from .store import TransactionStore

__all__ = [
    "init_database",
    "create_tables",
    "close_database",
    "get_db",
    "Base",
    "RawTransactionRecord",
    "CleanTransactionRecord",
    "CleanRebuildRecord",
    "TransactionStore",
]
