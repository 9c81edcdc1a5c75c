import argparse
import os
import time

import numpy as np
from dotenv import load_dotenv

from hymem.config import VectorIndexConfig
from hymem.memory.models import VectorEntry
from hymem.settings import build_config
from hymem.vector.index import LSHVectorIndex


def _clustered_vectors(rng, count: int, dim: int, clusters: int) -> np.ndarray:
    centers = rng.standard_normal((clusters, dim))
    labels = rng.integers(0, clusters, size=count)
    return centers[labels] + 0.3 * rng.standard_normal((count, dim))


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark LSH search against an exhaustive scan")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--vectors", type=int, default=5000)
    parser.add_argument("--queries", type=int, default=50)
    parser.add_argument("--clusters", type=int, default=40)
    parser.add_argument("--top-k", type=int, default=10)
    parser.add_argument("--runs", type=int, default=3)
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()

    load_dotenv()
    config = build_config(args.config or os.getenv("HYMEM_CONFIG_PATH"))
    index_config = VectorIndexConfig(
        dimension=config.vector_index.dimension,
        num_tables=config.vector_index.num_tables,
        num_hash_functions=config.vector_index.num_hash_functions,
        seed=args.seed,
        # Disable result caching so repeated runs measure search, not lookups.
        query_cache_size=1,
    )
    rng = np.random.default_rng(args.seed)
    dim = index_config.dimension
    data = _clustered_vectors(rng, args.vectors, dim, args.clusters)
    queries = _clustered_vectors(rng, args.queries, dim, args.clusters)

    index = LSHVectorIndex(index_config)
    start = time.perf_counter()
    for i, vector in enumerate(data):
        index.add(VectorEntry(id=f"m{i}", vector=vector.tolist()))
    build_s = time.perf_counter() - start
    print(f"Indexed {len(index)} vectors in {build_s:.2f}s: {index.stats()}")

    lsh_total = 0.0
    scan_total = 0.0
    recall_sum = 0.0
    for _ in range(args.runs):
        for query in queries:
            start = time.perf_counter()
            approx = index.search(query, args.top_k)
            lsh_total += time.perf_counter() - start

            start = time.perf_counter()
            exact = index.exhaustive_search(query, args.top_k)
            scan_total += time.perf_counter() - start

            exact_ids = {entry_id for entry_id, _ in exact}
            found = len(exact_ids & {entry_id for entry_id, _ in approx})
            recall_sum += found / max(len(exact_ids), 1)

    calls = max(args.runs * len(queries), 1)
    print(f"LSH avg latency:  {1000 * lsh_total / calls:.2f}ms")
    print(f"Scan avg latency: {1000 * scan_total / calls:.2f}ms")
    print(f"Recall@{args.top_k}: {recall_sum / calls:.3f}")


if __name__ == "__main__":
    main()
