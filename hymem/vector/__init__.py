from hymem.vector.index import LSHVectorIndex
from hymem.vector.service import GraphVectorService, VectorService

__all__ = ["GraphVectorService", "LSHVectorIndex", "VectorService"]
