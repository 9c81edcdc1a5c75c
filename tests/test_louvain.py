from hymem.graph.louvain import detect_communities, group_members, merge_small_communities, modularity


def _undirected(*edges, weight=1.0):
    adjacency = {}
    for a, b in edges:
        adjacency.setdefault(a, {})[b] = weight
        adjacency.setdefault(b, {})[a] = weight
    return adjacency


def test_two_triangles_joined_by_a_bridge():
    adjacency = _undirected(
        ("a", "b"), ("b", "c"), ("a", "c"),
        ("d", "e"), ("e", "f"), ("d", "f"),
        ("c", "d"),
    )
    assignment = detect_communities(adjacency)
    assert group_members(assignment) == [["a", "b", "c"], ["d", "e", "f"]]
    assert modularity(adjacency, assignment) > 0.3


def test_detection_is_deterministic():
    adjacency = _undirected(("a", "b"), ("b", "c"), ("c", "d"), ("d", "a"), ("a", "c"))
    assert detect_communities(adjacency) == detect_communities(adjacency)


def test_empty_weights_leave_singletons():
    adjacency = {"a": {}, "b": {}}
    assert detect_communities(adjacency) == {"a": 0, "b": 1}


def test_merge_small_folds_into_most_connected_neighbor():
    adjacency = _undirected(("a", "b"), ("b", "c"), ("a", "c"), ("c", "x"))
    assignment = {"a": 0, "b": 0, "c": 0, "x": 1}
    merged = merge_small_communities(adjacency, assignment, min_size=2)
    assert merged["x"] == 0


def test_merge_small_keeps_unlinked_singleton():
    adjacency = {"a": {"b": 1.0}, "b": {"a": 1.0}, "z": {}}
    merged = merge_small_communities(adjacency, {"a": 0, "b": 0, "z": 5}, min_size=2)
    assert merged["z"] == 5


def test_disconnected_triangles_stay_apart():
    adjacency = _undirected(
        ("a", "b"), ("b", "c"), ("a", "c"),
        ("d", "e"), ("e", "f"), ("d", "f"),
    )
    assignment = detect_communities(adjacency)
    assert group_members(assignment) == [["a", "b", "c"], ["d", "e", "f"]]
    assert merge_small_communities(adjacency, assignment, min_size=2) == assignment
