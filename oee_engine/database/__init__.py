"""
Database Module
"""
from .connection import init_database, close_database, get_db, get_session_factory
from .models import Base, LotRecord, Machine, Product, QualityIssueRecord, StopEventRecord
from .repository import SqlEventRepository

__all__ = [
    "init_database",
    "close_database",
    "get_db",
    "get_session_factory",
    "Base",
    "LotRecord",
    "Machine",
    "Product",
    "QualityIssueRecord",
    "StopEventRecord",
    "SqlEventRepository",
]
