import asyncio
import math
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from ideacanvas.actions import NodeActionDispatcher
from ideacanvas.generative import ServiceError
from ideacanvas.graph import (
    GraphStore, NodeKind, NODE_COLORS, SYNTHESIS_COLOR, IMAGE_COLOR, IMAGE_NODE_SIZE,
)


def make_service(ideas=None, synthesis="merged", image=None):
    service = MagicMock()
    service.request_expansion = AsyncMock(return_value=ideas if ideas is not None else [])
    service.request_synthesis = AsyncMock(return_value=synthesis)
    service.request_image = AsyncMock(return_value=image)
    return service


def make_dispatcher(service, style=None):
    graph = GraphStore()
    dispatcher = NodeActionDispatcher(
        graph, service,
        style_instruction=(lambda: style) if style is not None else None,
        rng=random.Random(42),
    )
    return dispatcher, graph


# --- expand ---

def test_expand_fans_ideas_around_source():
    service = make_service(ideas=["a", "b", "c"])
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(1000, 500, content="rockets")

    new_ids = asyncio.run(dispatcher.expand(source))

    assert len(new_ids) == 3
    assert len(graph) == 4
    assert [n.content for n in map(graph.get_node, new_ids)] == ["a", "b", "c"]
    assert sorted((c.from_id, c.to_id) for c in graph.connections) == sorted((source, n) for n in new_ids)
    for node_id in new_ids:
        node = graph.get_node(node_id)
        assert node.kind == NodeKind.TEXT
        assert node.color in NODE_COLORS
        distance = math.hypot(node.x - 1000, node.y - 500)
        assert 350 - 50 * math.sqrt(2) <= distance <= 350 + 50 * math.sqrt(2)
    src = graph.get_node(source)
    assert not src.is_busy
    assert src.last_error is None


def test_expand_spreads_ideas_evenly():
    service = make_service(ideas=["n", "e", "s", "w"])
    dispatcher, graph = make_dispatcher(service)
    dispatcher.EXPAND_JITTER = 0
    source = graph.add_node(0, 0, content="center")

    new_ids = asyncio.run(dispatcher.expand(source))

    angles = sorted(math.atan2(graph.get_node(i).y, graph.get_node(i).x) % (2 * math.pi)
                    for i in new_ids)
    gaps = [b - a for a, b in zip(angles, angles[1:])]
    assert gaps == pytest.approx([math.pi / 2] * 3)


def test_expand_leaves_selection_alone():
    service = make_service(ideas=["a"])
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")
    graph.set_selection([source])

    asyncio.run(dispatcher.expand(source))

    assert graph.selection == {source}


def test_expand_passes_style_instruction():
    service = make_service(ideas=["a"])
    dispatcher, graph = make_dispatcher(service, style="Be terse.")
    source = graph.add_node(0, 0, content="seed")

    asyncio.run(dispatcher.expand(source))

    service.request_expansion.assert_awaited_once_with("seed", "Be terse.")


def test_expand_blank_content_is_noop():
    service = make_service(ideas=["a"])
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="   ")

    assert asyncio.run(dispatcher.expand(source)) == []
    assert asyncio.run(dispatcher.expand("missing")) == []

    service.request_expansion.assert_not_awaited()
    assert not graph.get_node(source).is_busy


def test_expand_failure_marks_node():
    service = make_service()
    service.request_expansion.side_effect = ServiceError("expansion", "timeout")
    dispatcher, graph = make_dispatcher(service)
    errors = []
    dispatcher.on_error = errors.append
    source = graph.add_node(0, 0, content="x")

    assert asyncio.run(dispatcher.expand(source)) == []

    node = graph.get_node(source)
    assert not node.is_busy
    assert node.last_error == "Failed to expand"
    assert errors == ["Failed to expand"]
    assert len(graph) == 1


def test_expand_unexpected_exception_is_contained():
    service = make_service()
    service.request_expansion.side_effect = RuntimeError("boom")
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")

    asyncio.run(dispatcher.expand(source))

    assert graph.get_node(source).last_error == "Failed to expand"


def test_expand_empty_result_sets_error():
    service = make_service(ideas=[])
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")

    asyncio.run(dispatcher.expand(source))

    node = graph.get_node(source)
    assert not node.is_busy
    assert node.last_error == "No ideas returned"
    assert len(graph) == 1


def test_expand_clears_previous_error():
    service = make_service(ideas=["a"])
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")
    graph.set_error(source, "Failed to expand")

    asyncio.run(dispatcher.expand(source))

    assert graph.get_node(source).last_error is None


def test_expand_target_deleted_while_pending():
    service = make_service()
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")
    other = graph.add_node(500, 0, content="y")

    async def delete_then_answer(text, style):
        graph.delete_node(source)
        return ["a", "b"]

    service.request_expansion.side_effect = delete_then_answer

    assert asyncio.run(dispatcher.expand(source)) == []
    assert [n.id for n in graph.nodes] == [other]
    assert graph.connections == []


def test_expand_busy_while_pending():
    service = make_service()
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")
    seen = []

    async def answer(text, style):
        seen.append(graph.get_node(source).is_busy)
        return ["a"]

    service.request_expansion.side_effect = answer
    asyncio.run(dispatcher.expand(source))

    assert seen == [True]
    assert not graph.get_node(source).is_busy


# --- visualize ---

def test_visualize_places_image_to_the_right():
    service = make_service(image="data:image/png;base64,AAAA")
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(100, 40, width=280, height=160, content="a red fox")

    new_id = asyncio.run(dispatcher.visualize(source))

    image = graph.get_node(new_id)
    assert (image.x, image.y) == (430, 40)
    assert (image.width, image.height) == (IMAGE_NODE_SIZE, IMAGE_NODE_SIZE)
    assert image.kind == NodeKind.IMAGE
    assert image.color == IMAGE_COLOR
    assert image.content == "a red fox"
    assert image.image_data == "data:image/png;base64,AAAA"
    assert [(c.from_id, c.to_id) for c in graph.connections] == [(source, new_id)]
    assert not graph.get_node(source).is_busy
    service.request_image.assert_awaited_once_with("a red fox")


def test_visualize_without_image_changes_nothing():
    service = make_service(image=None)
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")

    assert asyncio.run(dispatcher.visualize(source)) is None

    node = graph.get_node(source)
    assert len(graph) == 1
    assert not node.is_busy
    assert node.last_error is None


def test_visualize_failure_marks_node():
    service = make_service()
    service.request_image.side_effect = ServiceError("image", "rejected")
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")

    asyncio.run(dispatcher.visualize(source))

    node = graph.get_node(source)
    assert not node.is_busy
    assert node.last_error == "Failed to visualize"


def test_visualize_target_deleted_while_pending():
    service = make_service()
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")

    async def delete_then_answer(text):
        graph.delete_node(source)
        return "data:image/png;base64,AAAA"

    service.request_image.side_effect = delete_then_answer

    assert asyncio.run(dispatcher.visualize(source)) is None
    assert len(graph) == 0


# --- synthesize ---

def test_synthesize_merges_two_selected_nodes():
    service = make_service(synthesis="X")
    dispatcher, graph = make_dispatcher(service)
    a = graph.add_node(0, 0, content="fire")
    b = graph.add_node(400, 0, content="ice")
    graph.set_selection([a, b])

    new_id = asyncio.run(dispatcher.synthesize())

    node = graph.get_node(new_id)
    assert (node.x, node.y) == (200, 200)
    assert node.content == "X"
    assert node.color == SYNTHESIS_COLOR
    assert sorted((c.from_id, c.to_id) for c in graph.connections) == sorted([(a, new_id), (b, new_id)])
    assert graph.selection == {new_id}
    assert not dispatcher.is_synthesizing
    assert dispatcher.last_error is None


@pytest.mark.parametrize("count", [0, 1, 3])
def test_synthesize_needs_exactly_two(count):
    service = make_service(synthesis="X")
    dispatcher, graph = make_dispatcher(service)
    ids = [graph.add_node(i * 100, 0, content=str(i)) for i in range(3)]
    graph.set_selection(ids[:count])

    assert asyncio.run(dispatcher.synthesize()) is None

    service.request_synthesis.assert_not_awaited()
    assert len(graph) == 3


def test_synthesize_failure_sets_global_error():
    service = make_service()
    service.request_synthesis.side_effect = ServiceError("synthesis", "down")
    dispatcher, graph = make_dispatcher(service)
    flags = []
    dispatcher.on_synthesizing_changed = flags.append
    a = graph.add_node(0, 0, content="a")
    b = graph.add_node(100, 0, content="b")
    graph.set_selection([a, b])

    assert asyncio.run(dispatcher.synthesize()) is None

    assert dispatcher.last_error == "Failed to synthesize"
    assert not dispatcher.is_synthesizing
    assert flags == [True, False]
    assert graph.selection == {a, b}


def test_synthesize_source_deleted_while_pending():
    service = make_service()
    dispatcher, graph = make_dispatcher(service)
    a = graph.add_node(0, 0, content="a")
    b = graph.add_node(100, 0, content="b")
    graph.set_selection([a, b])

    async def delete_then_answer(text_a, text_b, style):
        graph.delete_node(b)
        return "merged"

    service.request_synthesis.side_effect = delete_then_answer

    assert asyncio.run(dispatcher.synthesize()) is None
    assert [n.id for n in graph.nodes] == [a]
    assert not dispatcher.is_synthesizing


def test_second_synthesis_while_running_is_ignored():
    service = make_service()
    dispatcher, graph = make_dispatcher(service)
    a = graph.add_node(0, 0, content="a")
    b = graph.add_node(100, 0, content="b")
    graph.set_selection([a, b])
    nested = []

    async def answer(text_a, text_b, style):
        nested.append(await dispatcher.synthesize())
        return "merged"

    service.request_synthesis.side_effect = answer
    new_id = asyncio.run(dispatcher.synthesize())

    assert nested == [None]
    assert new_id is not None
    assert service.request_synthesis.await_count == 1


# --- overlapping actions ---

def test_busy_stays_on_until_last_action_on_node_finishes():
    service = make_service()
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")
    seen = {}

    async def scenario():
        release_image = asyncio.Event()

        async def slow_image(text):
            await release_image.wait()
            return None

        service.request_image.side_effect = slow_image
        service.request_expansion.return_value = ["a"]

        image_task = asyncio.ensure_future(dispatcher.visualize(source))
        await asyncio.sleep(0)
        await dispatcher.expand(source)
        seen["after_expand"] = graph.get_node(source).is_busy

        release_image.set()
        await image_task

    asyncio.run(scenario())

    assert seen["after_expand"] is True
    assert not graph.get_node(source).is_busy


def test_error_from_overlapping_action_survives_a_new_request():
    service = make_service()
    dispatcher, graph = make_dispatcher(service)
    source = graph.add_node(0, 0, content="x")
    seen = {}

    async def scenario():
        release_image = asyncio.Event()

        async def slow_image(text):
            await release_image.wait()
            return None

        service.request_image.side_effect = slow_image
        service.request_expansion.side_effect = ServiceError("expansion", "timeout")

        image_task = asyncio.ensure_future(dispatcher.visualize(source))
        await asyncio.sleep(0)
        await dispatcher.expand(source)

        service.request_expansion.side_effect = None
        service.request_expansion.return_value = ["a"]
        await dispatcher.expand(source)
        seen["error_while_image_pending"] = graph.get_node(source).last_error

        release_image.set()
        await image_task

    asyncio.run(scenario())

    assert seen["error_while_image_pending"] == "Failed to expand"
    assert not graph.get_node(source).is_busy


def test_concurrent_actions_on_different_nodes_complete_in_any_order():
    service = make_service()
    dispatcher, graph = make_dispatcher(service)
    a = graph.add_node(0, 0, content="alpha")
    b = graph.add_node(1000, 0, content="beta")
    busy_midway = {}

    async def scenario():
        release_a = asyncio.Event()
        release_b = asyncio.Event()

        async def held_expansion(text, style):
            await release_a.wait()
            return ["a1", "a2"]

        async def held_image(text):
            await release_b.wait()
            return "data:image/png;base64,AAAA"

        service.request_expansion.side_effect = held_expansion
        service.request_image.side_effect = held_image

        async def release_in_reverse():
            await asyncio.sleep(0)
            busy_midway["before"] = (graph.get_node(a).is_busy, graph.get_node(b).is_busy)
            release_b.set()
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            busy_midway["after_b"] = (graph.get_node(a).is_busy, graph.get_node(b).is_busy)
            release_a.set()

        return await asyncio.gather(
            dispatcher.expand(a), dispatcher.visualize(b), release_in_reverse(),
        )

    expanded, image_id, _ = asyncio.run(scenario())

    assert busy_midway["before"] == (True, True)
    assert busy_midway["after_b"] == (True, False)
    assert len(expanded) == 2
    assert len(graph) == 5
    assert sorted((c.from_id, c.to_id) for c in graph.connections) == sorted(
        [(a, expanded[0]), (a, expanded[1]), (b, image_id)]
    )
    assert graph.get_node(image_id).kind == NodeKind.IMAGE
    assert not graph.get_node(a).is_busy
    assert not graph.get_node(b).is_busy
