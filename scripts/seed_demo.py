import argparse
import os

from dotenv import load_dotenv

from hymem.cache import RelationshipCache
from hymem.cli import build_store
from hymem.graph.service import RelationshipService
from hymem.settings import build_config

SAMPLE_RELATIONS = [
    ("Alice", "Bob", "friend", 0.9),
    ("Alice", "Carol", "friend", 0.8),
    ("Bob", "Carol", "friend", 0.85),
    ("Carol", "Dave", "colleague", 0.6),
    ("Dave", "Erin", "family", 0.95),
    ("Erin", "Frank", "family", 0.9),
    ("Dave", "Frank", "family", 0.7),
    ("Grace", "Heidi", "classmate", 0.5),
]


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed HybridMEM with a demo relationship graph")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--backend", choices=["neo4j", "falkordb"])
    args = parser.parse_args()

    load_dotenv()
    config = build_config(args.config or os.getenv("HYMEM_CONFIG_PATH"))
    store = build_store(config, args.backend)
    store.ensure_schema()
    service = RelationshipService(
        store=store,
        config=config.graph,
        cache=RelationshipCache(config.cache),
        retry=config.retry,
    )
    seeded = 0
    for a, b, kind, confidence in SAMPLE_RELATIONS:
        if service.relate(a, b, kind, confidence, source="user_mentioned").ok:
            seeded += 1
    store.close()
    print(f"Seeded {seeded}/{len(SAMPLE_RELATIONS)} relationships")


if __name__ == "__main__":
    main()
