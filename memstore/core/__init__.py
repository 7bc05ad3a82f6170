from .memory_store import MemoryStore
from .schema import Memory, MemoryType, SearchResult, RerankerConfig
from .config import StoreSettings

__all__ = [
    'MemoryStore',
    'Memory',
    'MemoryType',
    'SearchResult',
    'RerankerConfig',
    'StoreSettings',
]
