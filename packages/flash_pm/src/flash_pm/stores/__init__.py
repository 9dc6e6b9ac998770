from .base import PmStore
from .memory import MemoryPmStore
from .sql_alchemy import SQLAlchemyPmStore

__all__ = ["PmStore", "MemoryPmStore", "SQLAlchemyPmStore"]
