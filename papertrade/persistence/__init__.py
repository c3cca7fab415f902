from papertrade.persistence.base import AccountStore
from papertrade.persistence.db import SqliteAccountStore
from papertrade.persistence.memory import MemoryAccountStore

__all__ = ["AccountStore", "MemoryAccountStore", "SqliteAccountStore"]
