from hymem.graph.neo4j_store import GraphStore
from hymem.graph.falkordb_store import FalkorGraphStore
from hymem.graph.service import RelationshipService

__all__ = ["GraphStore", "FalkorGraphStore", "RelationshipService"]
