import argparse
import json
from dataclasses import asdict

from dotenv import load_dotenv

from hymem.cache import RelationshipCache
from hymem.config import HybridMemConfig
from hymem.embeddings.openai_embedder import OpenAIEmbedder
from hymem.errors import InvalidQueryError
from hymem.graph.base import RelationshipGraphStore
from hymem.graph.falkordb_store import FalkorGraphStore
from hymem.graph.neo4j_store import GraphStore
from hymem.graph.service import RelationshipService
from hymem.logging_config import setup_logging
from hymem.memory.models import IntentType, MemoryCategory, QuerySpec, RecentDays
from hymem.memory.store import MemoryStore
from hymem.retrieval.fusion import HybridRankFusion
from hymem.retrieval.retriever import MemoryRetriever
from hymem.retrieval.scorer import MultiDimensionalScorer
from hymem.settings import build_config
from hymem.vector.index import LSHVectorIndex
from hymem.vector.service import GraphVectorService


def build_store(config: HybridMemConfig, backend: str | None) -> RelationshipGraphStore:
    backend = (backend or config.graph.backend).lower()
    if backend == "falkordb":
        return FalkorGraphStore(config.falkordb)
    return GraphStore(config.neo4j, config.graph, dimension=config.vector_index.dimension)


def _build_components(config_path: str | None, backend: str | None):
    config = build_config(config_path)
    store = build_store(config, backend)
    relationships = RelationshipService(
        store=store,
        config=config.graph,
        cache=RelationshipCache(config.cache),
        retry=config.retry,
    )
    return config, store, relationships


def _report(outcome) -> None:
    if outcome.degraded:
        print(f"(degraded: {outcome.error})")


def _print_path(path) -> None:
    if path is None:
        print("No path found")
        return
    hops = " -> ".join(path.nodes)
    kinds = ", ".join(edge.relation_type.value for edge in path.edges)
    print(f"{hops} | length={path.length} strength={path.strength:.2f} [{kinds}]")


def _query_spec(args) -> QuerySpec:
    categories = frozenset(MemoryCategory(c) for c in args.category) if args.category else None
    return QuerySpec(
        text=args.text,
        categories=categories,
        temporal=RecentDays(args.recent_days) if args.recent_days is not None else None,
        entities=tuple(args.entity or ()),
        intent=IntentType(args.intent) if args.intent else None,
        min_importance=args.min_importance,
        limit=args.limit,
        diversify=args.diversify,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="HybridMEM CLI")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--backend", choices=["neo4j", "falkordb"], help="Graph backend override")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-schema", help="Initialize graph schema and indexes")

    relate_cmd = sub.add_parser("relate", help="Create or update a relationship")
    relate_cmd.add_argument("person_a")
    relate_cmd.add_argument("person_b")
    relate_cmd.add_argument("--type", default="friend", help="Relation type label")
    relate_cmd.add_argument("--confidence", type=float, default=0.8)
    relate_cmd.add_argument("--description", default="")
    relate_cmd.add_argument("--source", default="user_mentioned")

    unrelate_cmd = sub.add_parser("unrelate", help="Soft-delete a relationship")
    unrelate_cmd.add_argument("person_a")
    unrelate_cmd.add_argument("person_b")

    sub.add_parser("communities", help="Detect communities in the active graph")

    community_cmd = sub.add_parser("community", help="Show the community of one person")
    community_cmd.add_argument("person")

    path_cmd = sub.add_parser("path", help="Shortest relationship path")
    path_cmd.add_argument("person_a")
    path_cmd.add_argument("person_b")
    path_cmd.add_argument("--max-depth", type=int)

    paths_cmd = sub.add_parser("paths", help="All relationship paths, shortest first")
    paths_cmd.add_argument("person_a")
    paths_cmd.add_argument("person_b")
    paths_cmd.add_argument("--max-depth", type=int)
    paths_cmd.add_argument("--max-paths", type=int)

    infer_cmd = sub.add_parser("infer", help="Infer a potential relationship")
    infer_cmd.add_argument("person_a")
    infer_cmd.add_argument("person_b")

    centrality_cmd = sub.add_parser("centrality", help="Degree and approximate betweenness centrality")
    centrality_cmd.add_argument("--top", type=int, default=10)

    sub.add_parser("diagnose", help="Network statistics, isolated people and triangles")

    index_cmd = sub.add_parser("index", help="Embed memories from a JSONL file into the vector store")
    index_cmd.add_argument("memories", help="JSONL file of memory records")

    query_cmd = sub.add_parser("query", help="Retrieve ranked memories")
    query_cmd.add_argument("memories", help="JSONL file of memory records")
    query_cmd.add_argument("--text")
    query_cmd.add_argument("--category", action="append", choices=[c.value for c in MemoryCategory])
    query_cmd.add_argument("--entity", action="append")
    query_cmd.add_argument("--intent", choices=[i.value for i in IntentType])
    query_cmd.add_argument("--recent-days", type=int)
    query_cmd.add_argument("--min-importance", type=float)
    query_cmd.add_argument("--limit", type=int, default=10)
    query_cmd.add_argument("--diversify", action="store_true")
    query_cmd.add_argument("--lexical", action="store_true", help="Skip the embedding service")

    args = parser.parse_args()
    load_dotenv()
    setup_logging(args.log_level)
    config, store, relationships = _build_components(args.config, args.backend)

    try:
        if args.command == "init-schema":
            store.ensure_schema()
            print("Schema initialized")
            return

        if args.command == "relate":
            outcome = relationships.relate(
                args.person_a,
                args.person_b,
                args.type,
                args.confidence,
                description=args.description,
                source=args.source,
            )
            if outcome.ok:
                edge = outcome.value
                print(f"{edge.person_a} - {edge.relation_type.value} - {edge.person_b} | conf={edge.confidence:.2f}")
            else:
                print(f"Failed: {outcome.error}")
            return

        if args.command == "unrelate":
            outcome = relationships.unrelate(args.person_a, args.person_b)
            print("Relationship ended" if outcome.value else "No active relationship")
            return

        if args.command == "communities":
            outcome = relationships.communities()
            _report(outcome)
            for community in outcome.value_or([]):
                print(f"#{community.id} ({community.size}) {', '.join(community.members)}")
            return

        if args.command == "community":
            outcome = relationships.find_community(args.person)
            _report(outcome)
            community = outcome.value
            if community is None:
                print(f"{args.person} is not in any community")
            else:
                print(f"#{community.id} ({community.size}) {', '.join(community.members)}")
            return

        if args.command == "path":
            outcome = relationships.find_path(args.person_a, args.person_b, args.max_depth)
            _report(outcome)
            _print_path(outcome.value)
            return

        if args.command == "paths":
            outcome = relationships.find_all_paths(
                args.person_a, args.person_b, args.max_depth, args.max_paths
            )
            _report(outcome)
            paths = outcome.value_or([])
            if not paths:
                print("No path found")
            for path in paths:
                _print_path(path)
            return

        if args.command == "infer":
            outcome = relationships.infer_relationship(args.person_a, args.person_b)
            _report(outcome)
            inference = outcome.value
            if inference is not None:
                print(
                    f"{inference.person_a} ? {inference.person_b} | {inference.label} "
                    f"conf={inference.confidence:.2f} | {'; '.join(inference.evidence)}"
                )
            return

        if args.command == "centrality":
            outcome = relationships.centrality(args.top)
            _report(outcome)
            for score in outcome.value_or([]):
                print(
                    f"{score.name} | degree={score.degree} "
                    f"betweenness~={score.betweenness:.1f} norm={score.normalized:.2f}"
                )
            return

        if args.command == "diagnose":
            stats = relationships.statistics()
            _report(stats)
            if stats.value is not None:
                print(json.dumps(asdict(stats.value), ensure_ascii=False, indent=2))
            print(f"Isolated: {', '.join(relationships.isolated_nodes().value_or([])) or '-'}")
            for triangle in relationships.triangles().value_or([]):
                print(f"Triangle ({triangle.relation_type.value}): {', '.join(triangle.nodes)}")
            print(json.dumps(relationships.cache.stats(), indent=2))
            return

        memories = MemoryStore()
        memories.load_jsonl(args.memories)
        index = LSHVectorIndex(config.vector_index)
        vectors = None
        if args.command == "index" or not getattr(args, "lexical", False):
            vectors = GraphVectorService(OpenAIEmbedder(config.embedding, config.retry), store, config.retry)
        retriever = MemoryRetriever(
            store=memories,
            index=index,
            scorer=MultiDimensionalScorer(config.scoring),
            fusion=HybridRankFusion(config.fusion),
            config=config.retrieval,
            vectors=vectors,
            relationships=relationships,
        )

        if args.command == "index":
            failed = 0
            for record in memories.all(include_forgotten=True):
                if not retriever.index_memory(record).ok:
                    failed += 1
            print(f"Indexed {len(memories) - failed} memories ({failed} failed)")
            return

        if args.command == "query":
            try:
                results = retriever.retrieve(_query_spec(args))
            except InvalidQueryError as exc:
                parser.error(str(exc))
            for item in results:
                b = item.breakdown
                print(
                    f"{item.memory.category.value} | {item.memory.content} | "
                    f"score={item.score:.3f} sem={b.semantic:.2f} tmp={b.temporal:.2f} "
                    f"imp={b.importance:.2f} emo={b.emotional:.2f} ent={b.entity:.2f} "
                    f"int={b.intent:.2f} | {','.join(item.sources)}"
                )
    finally:
        store.close()


if __name__ == "__main__":
    main()
