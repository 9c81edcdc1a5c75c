from hymem.memory.models import MemoryCategory, MemoryRecord, QuerySpec, RankedMemory, ScoreBreakdown
from hymem.memory.store import MemoryStore

__all__ = ["MemoryCategory", "MemoryRecord", "MemoryStore", "QuerySpec", "RankedMemory", "ScoreBreakdown"]
