"""Search domain exports."""

from .service import SearchService, get_search_service
from .store import reset_memory_state, seed_memory_store

__all__ = [
	"SearchService",
	"get_search_service",
	"seed_memory_store",
	"reset_memory_state",
]
