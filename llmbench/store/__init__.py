from ..config import Settings
from .base import DataStore, QueryResult
from .memory import MemoryStore
from .supabase import SupabaseStore


def build_store(settings: Settings) -> DataStore:
    if settings.data_store == "supabase":
        return SupabaseStore(settings.supabase_url, settings.supabase_key, timeout=settings.supabase_timeout_seconds)
    return MemoryStore()


__all__ = ["DataStore", "QueryResult", "MemoryStore", "SupabaseStore", "build_store"]
