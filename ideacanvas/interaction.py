"""Pointer-driven interaction modes for the canvas.

The machine holds exactly one of ``Idle``, ``PanningCanvas`` or
``DraggingNodes``. Hosts feed it raw pointer and wheel events (screen
coordinates plus whatever node the host hit-tested under the pointer) and it
turns them into ``GraphStore`` and ``ViewportController`` calls.
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Callable, Union

from ideacanvas.geometry import Point
from ideacanvas.graph import GraphStore, NODE_COLORS, DEFAULT_NODE_WIDTH, DEFAULT_NODE_HEIGHT
from ideacanvas.viewport import ViewportController


logger = logging.getLogger(__name__)

# GDK button numbering
BUTTON_PRIMARY = 1
BUTTON_MIDDLE = 2
BUTTON_SECONDARY = 3

ADD_NODE_JITTER = 20.0


class ToolMode(Enum):
    """Default meaning of a pointer press."""
    SELECT = "SELECT"
    HAND = "HAND"


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class PanningCanvas:
    anchor: Point  # screen position at the previous move


@dataclass(frozen=True)
class DraggingNodes:
    last: Point  # screen position at the previous move


InteractionState = Union[Idle, PanningCanvas, DraggingNodes]


class InteractionMachine:
    """Translates pointer gestures into graph and viewport mutations."""

    def __init__(self, graph: GraphStore, viewport: ViewportController,
                 rng: Optional[random.Random] = None):
        self.graph = graph
        self.viewport = viewport
        self.rng = rng or random.Random()
        self.tool = ToolMode.SELECT
        self.state: InteractionState = Idle()

        # Hook for a future rubber-band selection; called with the press position
        self.on_selection_box_start: Optional[Callable[[Point], None]] = None
        self.on_tool_changed: Optional[Callable[[ToolMode], None]] = None

    @property
    def is_panning(self) -> bool:
        return isinstance(self.state, PanningCanvas)

    @property
    def is_dragging(self) -> bool:
        return isinstance(self.state, DraggingNodes)

    def set_tool(self, tool: ToolMode):
        if tool == self.tool:
            return
        self.tool = tool
        if self.on_tool_changed:
            self.on_tool_changed(tool)

    def pointer_down(self, button: int, target_id: Optional[str], shift: bool, position: Point):
        """Handle a press. target_id is the node under the pointer, or None."""
        # A new press always starts from Idle; whatever gesture was live is dropped
        self.state = Idle()
        on_node = target_id is not None and target_id in self.graph

        # Hand tool over a node: no transition at all
        if self.tool == ToolMode.HAND and on_node and button != BUTTON_MIDDLE:
            return

        if button == BUTTON_MIDDLE or self.tool == ToolMode.HAND:
            self.state = PanningCanvas(anchor=position)
            return

        if not on_node:
            self.graph.clear_selection()
            if self.tool == ToolMode.SELECT and self.on_selection_box_start:
                self.on_selection_box_start(position)
            return

        if shift:
            # Shift-click only edits the selection, it never starts a drag
            self.graph.toggle_selection(target_id)
            return

        if not self.graph.is_selected(target_id):
            self.graph.set_selection([target_id])

        self.state = DraggingNodes(last=position)

    def pointer_move(self, position: Point):
        state = self.state
        if isinstance(state, PanningCanvas):
            self.viewport.apply_pan(position.x - state.anchor.x, position.y - state.anchor.y)
            self.state = PanningCanvas(anchor=position)
        elif isinstance(state, DraggingNodes):
            # Always the live scale, so the nodes stay under the cursor
            scale = self.viewport.scale
            dx = (position.x - state.last.x) / scale
            dy = (position.y - state.last.y) / scale
            self.graph.move_nodes(self.graph.selection, dx, dy)
            self.state = DraggingNodes(last=position)

    def pointer_up(self):
        self.state = Idle()

    def wheel(self, dx: float, dy: float, modifier: bool, position: Point):
        self.viewport.handle_wheel(dx, dy, modifier, position)

    def add_node(self, screen_center: Point) -> str:
        """Create an empty text node centered (roughly) on a screen point and select it."""
        center = self.viewport.screen_to_world(screen_center)
        node_id = self.graph.add_node(
            x=center.x - DEFAULT_NODE_WIDTH / 2 + self.rng.uniform(-ADD_NODE_JITTER, ADD_NODE_JITTER),
            y=center.y - DEFAULT_NODE_HEIGHT / 2 + self.rng.uniform(-ADD_NODE_JITTER, ADD_NODE_JITTER),
            content="",
            color=self.rng.choice(NODE_COLORS),
        )
        self.graph.set_selection([node_id])
        self.set_tool(ToolMode.SELECT)
        logger.debug(f"Added node {node_id}")
        return node_id
