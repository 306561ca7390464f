from ideacanvas.geometry import Point
from ideacanvas.graph import GraphStore, NodeKind, DEFAULT_NODE_WIDTH


def _graph_with(*positions):
    graph = GraphStore()
    ids = [graph.add_node(x, y, content=f"node {i}") for i, (x, y) in enumerate(positions)]
    return graph, ids


def test_add_node_returns_unique_ids_and_leaves_selection():
    graph, (a, b) = _graph_with((0, 0), (10, 10))
    graph.set_selection([a])

    c = graph.add_node(50, 50, content="new", kind=NodeKind.IMAGE, image_data="data:x")

    assert len({a, b, c}) == 3
    assert graph.selection == {a}
    node = graph.get_node(c)
    assert node.kind == NodeKind.IMAGE
    assert node.image_data == "data:x"
    assert node.width == DEFAULT_NODE_WIDTH
    assert not node.is_busy and node.last_error is None


def test_update_content():
    graph, (a,) = _graph_with((0, 0))

    graph.update_content(a, "changed")
    graph.update_content("missing", "ignored")

    assert graph.get_node(a).content == "changed"
    assert len(graph) == 1


def test_delete_node_cascades_connections_and_selection():
    graph, (a, b, c) = _graph_with((0, 0), (100, 0), (200, 0))
    ab = graph.add_connection(a, b)
    ca = graph.add_connection(c, a)
    bc = graph.add_connection(b, c)
    graph.set_selection([a, b])

    graph.delete_node(a)

    assert a not in graph
    assert graph.get_connection(ab) is None
    assert graph.get_connection(ca) is None
    assert [conn.id for conn in graph.connections] == [bc]
    assert graph.selection == {b}


def test_delete_missing_node_is_noop():
    graph, (a, b) = _graph_with((0, 0), (100, 0))
    graph.add_connection(a, b)

    graph.delete_node("missing")

    assert len(graph) == 2
    assert len(graph.connections) == 1


def test_move_nodes_skips_unknown_ids():
    graph, (a, b, c) = _graph_with((0, 0), (100, 50), (300, 300))

    graph.move_nodes([a, "gone", b], 12.5, -4)

    assert (graph.get_node(a).x, graph.get_node(a).y) == (12.5, -4)
    assert (graph.get_node(b).x, graph.get_node(b).y) == (112.5, 46)
    assert (graph.get_node(c).x, graph.get_node(c).y) == (300, 300)


def test_move_nodes_moves_each_node_once_for_duplicate_ids():
    graph, (a,) = _graph_with((0, 0))

    graph.move_nodes([a, a], 10, 10)

    assert (graph.get_node(a).x, graph.get_node(a).y) == (10, 10)


def test_toggle_selection():
    graph, (a, b, c) = _graph_with((0, 0), (1, 1), (2, 2))
    graph.set_selection([a, b, c])

    graph.toggle_selection(b)
    assert graph.selection == {a, c}

    graph.toggle_selection(b)
    assert graph.selection == {a, b, c}


def test_selection_never_holds_unknown_ids():
    graph, (a,) = _graph_with((0, 0))

    graph.set_selection([a, "ghost"])
    graph.toggle_selection("other-ghost")

    assert graph.selection == {a}


def test_clear_selection():
    graph, (a, b) = _graph_with((0, 0), (1, 1))
    graph.set_selection([a, b])

    graph.clear_selection()

    assert graph.selection == frozenset()


def test_busy_and_error_flags():
    graph, (a,) = _graph_with((0, 0))

    graph.set_busy(a, True)
    graph.set_error(a, "Failed to expand")
    graph.set_busy("missing", True)
    graph.set_error("missing", "nope")

    node = graph.get_node(a)
    assert node.is_busy
    assert node.last_error == "Failed to expand"

    graph.set_error(a, None)
    assert node.last_error is None


def test_node_at_returns_topmost():
    graph, (bottom, top) = _graph_with((0, 0), (100, 50))

    assert graph.node_at(Point(150, 100)).id == top
    assert graph.node_at(Point(10, 10)).id == bottom
    assert graph.node_at(Point(-5, -5)) is None


def test_bounds():
    graph = GraphStore()
    assert graph.bounds() is None

    graph.add_node(-100, 20, width=50, height=50)
    graph.add_node(200, -30, width=100, height=10)

    assert graph.bounds() == (-100, -30, 300, 70)


def test_on_changed_fires_after_mutations():
    graph = GraphStore()
    calls = []
    graph.on_changed = lambda: calls.append(len(graph))

    node_id = graph.add_node(0, 0)
    graph.update_content(node_id, "x")
    graph.delete_node(node_id)

    assert calls == [1, 1, 0]
