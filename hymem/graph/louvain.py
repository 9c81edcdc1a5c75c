"""Single-level Louvain community detection over a weighted undirected graph.

The adjacency map is ``{node: {neighbor: weight}}`` and must be symmetric.
Nodes are visited in sorted order and ties resolve to the smallest community
id, so the partition is deterministic for a given graph.
"""

import logging
from typing import Mapping

logger = logging.getLogger(__name__)

Adjacency = Mapping[str, Mapping[str, float]]

_EPS = 1e-12


def _degrees(adjacency: Adjacency) -> dict[str, float]:
    return {node: float(sum(neighbors.values())) for node, neighbors in adjacency.items()}


def modularity(adjacency: Adjacency, assignment: Mapping[str, int]) -> float:
    degrees = _degrees(adjacency)
    two_m = sum(degrees.values())
    if two_m <= 0:
        return 0.0
    internal: dict[int, float] = {}
    totals: dict[int, float] = {}
    for node, neighbors in adjacency.items():
        community = assignment[node]
        totals[community] = totals.get(community, 0.0) + degrees[node]
        for neighbor, weight in neighbors.items():
            if assignment.get(neighbor) == community:
                internal[community] = internal.get(community, 0.0) + weight
    return sum(
        internal.get(c, 0.0) / two_m - (totals[c] / two_m) ** 2 for c in totals
    )


def detect_communities(
    adjacency: Adjacency,
    max_iterations: int = 100,
    min_gain: float = 1e-4,
) -> dict[str, int]:
    """Return ``{node: community_id}``.

    Each pass moves a node into the neighboring community with the largest
    strictly positive gain over staying put,
    ``dQ = (k_i_in - sigma_tot * k_i / 2m) / 2m``. Stops after a pass with no
    moves or when modularity improves by less than ``min_gain``.
    """
    nodes = sorted(adjacency)
    assignment = {node: idx for idx, node in enumerate(nodes)}
    degrees = _degrees(adjacency)
    two_m = sum(degrees.values())
    if two_m <= 0:
        return assignment

    sigma_tot = {assignment[node]: degrees[node] for node in nodes}
    current_q = modularity(adjacency, assignment)

    for iteration in range(max(max_iterations, 1)):
        moves = 0
        for node in nodes:
            home = assignment[node]
            k_i = degrees[node]
            links: dict[int, float] = {}
            for neighbor, weight in adjacency[node].items():
                if neighbor == node:
                    continue
                community = assignment[neighbor]
                links[community] = links.get(community, 0.0) + weight

            sigma_tot[home] -= k_i

            def gain(community: int) -> float:
                return (links.get(community, 0.0) - sigma_tot.get(community, 0.0) * k_i / two_m) / two_m

            best = home
            best_gain = gain(home)
            for community in sorted(links):
                if community == home:
                    continue
                candidate = gain(community)
                if candidate > best_gain + _EPS:
                    best, best_gain = community, candidate

            sigma_tot[best] = sigma_tot.get(best, 0.0) + k_i
            if best != home:
                assignment[node] = best
                moves += 1

        new_q = modularity(adjacency, assignment)
        improvement = new_q - current_q
        current_q = new_q
        logger.debug("Louvain pass %d: %d moves, Q=%.4f", iteration + 1, moves, new_q)
        if moves == 0 or improvement < min_gain:
            break

    return assignment


def merge_small_communities(
    adjacency: Adjacency,
    assignment: Mapping[str, int],
    min_size: int,
) -> dict[str, int]:
    """Fold communities below ``min_size`` into their most-connected neighbor.

    A small community with no outside links is left as it is.
    """
    merged = dict(assignment)
    if min_size <= 1:
        return merged

    def members_of(community: int) -> list[str]:
        return sorted(node for node, c in merged.items() if c == community)

    changed = True
    while changed:
        changed = False
        sizes: dict[int, int] = {}
        for community in merged.values():
            sizes[community] = sizes.get(community, 0) + 1
        for community in sorted(sizes, key=lambda c: (sizes[c], c)):
            if sizes[community] >= min_size:
                continue
            links: dict[int, float] = {}
            for node in members_of(community):
                for neighbor, weight in adjacency.get(node, {}).items():
                    target = merged[neighbor]
                    if target != community:
                        links[target] = links.get(target, 0.0) + weight
            if not links:
                continue
            target = min(links, key=lambda c: (-links[c], c))
            for node in members_of(community):
                merged[node] = target
            changed = True
            break
    return merged


def group_members(assignment: Mapping[str, int]) -> list[list[str]]:
    """Communities as sorted member lists, largest first."""
    groups: dict[int, list[str]] = {}
    for node, community in assignment.items():
        groups.setdefault(community, []).append(node)
    return sorted((sorted(members) for members in groups.values()), key=lambda m: (-len(m), m[0]))
