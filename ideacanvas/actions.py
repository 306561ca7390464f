"""Generative node actions: expand, visualize and synthesize.

Each action marks its target busy, awaits the generative service and folds
the result back into the graph store. Failures end up as an error marker on
the node (or on the dispatcher, for synthesis) and never propagate to the
caller. A target deleted while its request was outstanding is skipped.
"""

import logging
import math
import random
from collections import Counter
from typing import Optional, List, Callable

from ideacanvas.generative import GenerativeService, ServiceError
from ideacanvas.graph import (
    GraphStore, NodeKind, NODE_COLORS, SYNTHESIS_COLOR, IMAGE_COLOR, IMAGE_NODE_SIZE,
)


logger = logging.getLogger(__name__)


class NodeActionDispatcher:
    """Runs generative actions against a graph store."""

    EXPAND_RADIUS = 350.0
    EXPAND_JITTER = 50.0
    VISUALIZE_GAP = 50.0
    SYNTHESIS_DROP = 200.0

    def __init__(self, graph: GraphStore, service: GenerativeService,
                 style_instruction: Optional[Callable[[], Optional[str]]] = None,
                 rng: Optional[random.Random] = None):
        self.graph = graph
        self.service = service
        self.style_instruction = style_instruction
        self.rng = rng or random.Random()

        # Outstanding actions per node; busy clears only when this drops to zero
        self._pending: Counter = Counter()

        # Synthesis has two targets, so its progress and failure are global
        self.is_synthesizing = False
        self.last_error: Optional[str] = None

        # Callbacks
        self.on_error: Optional[Callable[[str], None]] = None
        self.on_synthesizing_changed: Optional[Callable[[bool], None]] = None

    def _style(self) -> Optional[str]:
        return self.style_instruction() if self.style_instruction else None

    def _report(self, message: str):
        if self.on_error:
            self.on_error(message)

    def _begin(self, node_id: str):
        if not self._pending[node_id]:
            self.graph.set_error(node_id, None)
        self._pending[node_id] += 1
        self.graph.set_busy(node_id, True)

    def _finish(self, node_id: str):
        self._pending[node_id] -= 1
        if self._pending[node_id] <= 0:
            del self._pending[node_id]
            self.graph.set_busy(node_id, False)

    def _fail(self, node_id: str, message: str):
        self._finish(node_id)
        self.graph.set_error(node_id, message)
        if node_id in self.graph:
            self._report(message)

    def _set_synthesizing(self, flag: bool):
        self.is_synthesizing = flag
        if self.on_synthesizing_changed:
            self.on_synthesizing_changed(flag)

    async def expand(self, node_id: str) -> List[str]:
        """Fan related ideas out in a circle around the node. Returns new node ids."""
        source = self.graph.get_node(node_id)
        if source is None or not source.content.strip():
            return []

        logger.debug(f"Expanding node {node_id}")
        self._begin(node_id)
        try:
            ideas = await self.service.request_expansion(source.content, self._style())
        except ServiceError as e:
            logger.error(f"Expansion of node {node_id} failed: {e}")
            self._fail(node_id, "Failed to expand")
            return []
        except Exception:  # pylint: disable=broad-except
            logger.exception(f"Unexpected error expanding node {node_id}")
            self._fail(node_id, "Failed to expand")
            return []

        if not ideas:
            logger.warning(f"Expansion of node {node_id} returned no ideas")
            self._fail(node_id, "No ideas returned")
            return []

        source = self.graph.get_node(node_id)
        if source is None:
            logger.info(f"Node {node_id} was deleted before its expansion finished")
            self._finish(node_id)
            return []

        start_angle = self.rng.random() * math.pi * 2
        new_ids = []
        for index, idea in enumerate(ideas):
            angle = start_angle + (index / len(ideas)) * math.pi * 2
            new_id = self.graph.add_node(
                x=source.x + math.cos(angle) * self.EXPAND_RADIUS + self.rng.random() * self.EXPAND_JITTER,
                y=source.y + math.sin(angle) * self.EXPAND_RADIUS + self.rng.random() * self.EXPAND_JITTER,
                content=idea,
                kind=NodeKind.TEXT,
                color=self.rng.choice(NODE_COLORS),
            )
            self.graph.add_connection(node_id, new_id)
            new_ids.append(new_id)

        self._finish(node_id)
        logger.info(f"Expanded node {node_id} into {len(new_ids)} ideas")
        return new_ids

    async def visualize(self, node_id: str) -> Optional[str]:
        """Place a generated image to the right of the node. Returns the new node id."""
        source = self.graph.get_node(node_id)
        if source is None:
            return None

        logger.debug(f"Visualizing node {node_id}")
        self._begin(node_id)
        try:
            image = await self.service.request_image(source.content)
        except ServiceError as e:
            logger.error(f"Visualization of node {node_id} failed: {e}")
            self._fail(node_id, "Failed to visualize")
            return None
        except Exception:  # pylint: disable=broad-except
            logger.exception(f"Unexpected error visualizing node {node_id}")
            self._fail(node_id, "Failed to visualize")
            return None

        source = self.graph.get_node(node_id)
        if source is None:
            logger.info(f"Node {node_id} was deleted before its image arrived")
            self._finish(node_id)
            return None

        if image is None:
            # The service declined; nothing to show, nothing went wrong
            self._finish(node_id)
            return None

        new_id = self.graph.add_node(
            x=source.x + source.width + self.VISUALIZE_GAP,
            y=source.y,
            width=IMAGE_NODE_SIZE,
            height=IMAGE_NODE_SIZE,
            content=source.content,
            kind=NodeKind.IMAGE,
            color=IMAGE_COLOR,
            image_data=image,
        )
        self.graph.add_connection(node_id, new_id)
        self._finish(node_id)
        logger.info(f"Visualized node {node_id} as {new_id}")
        return new_id

    async def synthesize(self) -> Optional[str]:
        """Merge the two selected nodes into a new one below them.

        Anything other than exactly two selected nodes is a no-op. On success
        the selection becomes just the new node.
        """
        selected = self.graph.selected_nodes()
        if len(selected) != 2 or self.is_synthesizing:
            return None
        node_a, node_b = selected
        id_a, id_b = node_a.id, node_b.id

        logger.debug(f"Synthesizing {id_a} and {id_b}")
        self.last_error = None
        self._set_synthesizing(True)
        try:
            text = await self.service.request_synthesis(node_a.content, node_b.content, self._style())
        except ServiceError as e:
            logger.error(f"Synthesis of {id_a} and {id_b} failed: {e}")
            self.last_error = "Failed to synthesize"
            self._set_synthesizing(False)
            self._report(self.last_error)
            return None
        except Exception:  # pylint: disable=broad-except
            logger.exception(f"Unexpected error synthesizing {id_a} and {id_b}")
            self.last_error = "Failed to synthesize"
            self._set_synthesizing(False)
            self._report(self.last_error)
            return None

        node_a, node_b = self.graph.get_node(id_a), self.graph.get_node(id_b)
        if node_a is None or node_b is None:
            logger.info("A synthesis source was deleted before the result arrived")
            self._set_synthesizing(False)
            return None

        new_id = self.graph.add_node(
            x=(node_a.x + node_b.x) / 2,
            y=(node_a.y + node_b.y) / 2 + self.SYNTHESIS_DROP,
            content=text,
            kind=NodeKind.TEXT,
            color=SYNTHESIS_COLOR,
        )
        self.graph.add_connection(id_a, new_id)
        self.graph.add_connection(id_b, new_id)
        self.graph.set_selection([new_id])
        self._set_synthesizing(False)
        logger.info(f"Synthesized {id_a} and {id_b} into {new_id}")
        return new_id
