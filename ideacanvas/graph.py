"""Node/connection graph and selection for IdeaCanvas."""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Dict, Set, FrozenSet, Iterable, Callable, Tuple

from ideacanvas.geometry import Point


DEFAULT_NODE_WIDTH = 280.0
DEFAULT_NODE_HEIGHT = 160.0
IMAGE_NODE_SIZE = 300.0

NODE_COLORS = [
    "#1e293b",  # Slate 800 (default)
    "#334155",  # Slate 700
    "#14532d",  # Green 900
    "#7c2d12",  # Orange 900
    "#1e3a8a",  # Blue 900
    "#581c87",  # Purple 900
]
SYNTHESIS_COLOR = "#4f46e5"  # Indigo
IMAGE_COLOR = "#000000"


def generate_id() -> str:
    return str(uuid.uuid4())


class NodeKind(Enum):
    """What a node displays."""
    TEXT = "TEXT"
    IMAGE = "IMAGE"


@dataclass
class Node:
    """A rectangular idea on the canvas, positioned in world units."""
    id: str
    x: float
    y: float
    width: float = DEFAULT_NODE_WIDTH
    height: float = DEFAULT_NODE_HEIGHT  # minimum; drawn content may be taller
    content: str = ""
    kind: NodeKind = NodeKind.TEXT
    color: str = NODE_COLORS[0]
    image_data: Optional[str] = None  # data URI, IMAGE nodes only
    is_busy: bool = False
    last_error: Optional[str] = None

    def contains_point(self, px: float, py: float) -> bool:
        """Check if a world-space point is inside this node."""
        return (self.x <= px <= self.x + self.width and
                self.y <= py <= self.y + self.height)


@dataclass(frozen=True)
class Connection:
    """Directed provenance edge: from_id produced to_id."""
    id: str
    from_id: str
    to_id: str


class GraphStore:
    """Owns nodes, connections and the selection set.

    Every mutator leaves the store consistent on return. Unknown ids are
    never an error: in-flight generative calls and drags routinely refer to
    nodes that have since been deleted.
    """

    def __init__(self):
        # Insertion order doubles as z-order (last drawn on top)
        self._nodes: Dict[str, Node] = {}
        self._connections: Dict[str, Connection] = {}
        self._selection: Set[str] = set()

        # Callbacks
        self.on_changed: Optional[Callable[[], None]] = None

    def _notify_changed(self):
        if self.on_changed:
            self.on_changed()

    # ---- read side ----

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    @property
    def selection(self) -> FrozenSet[str]:
        return frozenset(self._selection)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def is_selected(self, node_id: str) -> bool:
        return node_id in self._selection

    def selected_nodes(self) -> List[Node]:
        """Selected nodes, in z-order."""
        return [n for n in self._nodes.values() if n.id in self._selection]

    def node_at(self, point: Point) -> Optional[Node]:
        """Find the top-most node under a world-space point."""
        for node in reversed(self._nodes.values()):
            if node.contains_point(point.x, point.y):
                return node
        return None

    def bounds(self) -> Optional[Tuple[float, float, float, float]]:
        """World-space (min_x, min_y, max_x, max_y) of all nodes, or None if empty."""
        if not self._nodes:
            return None
        nodes = self._nodes.values()
        return (
            min(n.x for n in nodes),
            min(n.y for n in nodes),
            max(n.x + n.width for n in nodes),
            max(n.y + n.height for n in nodes),
        )

    # ---- nodes ----

    def add_node(self, x: float, y: float,
                 width: float = DEFAULT_NODE_WIDTH,
                 height: float = DEFAULT_NODE_HEIGHT,
                 content: str = "",
                 kind: NodeKind = NodeKind.TEXT,
                 color: str = NODE_COLORS[0],
                 image_data: Optional[str] = None) -> str:
        """Insert a node and return its id. Selection is left alone."""
        node = Node(
            id=generate_id(),
            x=x,
            y=y,
            width=width,
            height=height,
            content=content,
            kind=kind,
            color=color,
            image_data=image_data,
        )
        self._nodes[node.id] = node
        self._notify_changed()
        return node.id

    def update_content(self, node_id: str, text: str):
        node = self._nodes.get(node_id)
        if node is None:
            return
        node.content = text
        self._notify_changed()

    def move_nodes(self, node_ids: Iterable[str], dx: float, dy: float):
        """Translate every existing node in node_ids by (dx, dy) world units."""
        moved = False
        for node_id in set(node_ids):
            node = self._nodes.get(node_id)
            if node is None:
                continue
            node.x += dx
            node.y += dy
            moved = True
        if moved:
            self._notify_changed()

    def delete_node(self, node_id: str):
        """Remove a node together with its connections and selection entry."""
        if node_id not in self._nodes:
            return
        del self._nodes[node_id]
        self._connections = {
            cid: c for cid, c in self._connections.items()
            if c.from_id != node_id and c.to_id != node_id
        }
        self._selection.discard(node_id)
        self._notify_changed()

    def set_busy(self, node_id: str, busy: bool):
        node = self._nodes.get(node_id)
        if node is None:
            return
        node.is_busy = busy
        self._notify_changed()

    def set_error(self, node_id: str, message: Optional[str]):
        node = self._nodes.get(node_id)
        if node is None:
            return
        node.last_error = message
        self._notify_changed()

    # ---- connections ----

    def add_connection(self, from_id: str, to_id: str) -> str:
        """Record a from_id -> to_id edge.

        Callers guarantee both endpoints exist; the store does not check.
        """
        connection = Connection(id=generate_id(), from_id=from_id, to_id=to_id)
        self._connections[connection.id] = connection
        self._notify_changed()
        return connection.id

    # ---- selection ----

    def set_selection(self, node_ids: Iterable[str]):
        self._selection = {nid for nid in node_ids if nid in self._nodes}
        self._notify_changed()

    def toggle_selection(self, node_id: str):
        if node_id in self._selection:
            self._selection.discard(node_id)
        elif node_id in self._nodes:
            self._selection.add(node_id)
        else:
            return
        self._notify_changed()

    def clear_selection(self):
        if not self._selection:
            return
        self._selection.clear()
        self._notify_changed()
