from mathsolver.db.engine import build_engine, get_engine, init_db
from mathsolver.db.models import Base, ProviderRecord, TokenRecord
from mathsolver.db.store import ProviderStore, SqlProviderStore

__all__ = [
    "Base",
    "ProviderRecord",
    "TokenRecord",
    "ProviderStore",
    "SqlProviderStore",
    "build_engine",
    "get_engine",
    "init_db",
]
