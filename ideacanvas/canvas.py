"""Canvas widget: draws the idea graph and feeds pointer input to the interaction machine."""

import asyncio
import base64
import binascii
import io
import logging
import math
from typing import Optional, Dict, Set, Callable, Coroutine, Any

import gi

gi.require_version("Gtk", "4.0")
gi.require_version("Gdk", "4.0")
gi.require_version("PangoCairo", "1.0")
from gi.repository import Gtk, Gdk, GLib, Gio, Pango, PangoCairo

import cairo

from ideacanvas.actions import NodeActionDispatcher
from ideacanvas.geometry import Point, node_center, compute_connection_curve
from ideacanvas.graph import GraphStore, Node, NodeKind
from ideacanvas.interaction import InteractionMachine, ToolMode, BUTTON_PRIMARY
from ideacanvas.viewport import ViewportController
from ideacanvas.widgets import NodeEditorPopover


logger = logging.getLogger(__name__)


def _hex_to_rgb(value: str, fallback=(0.118, 0.161, 0.231)):
    try:
        color = value.lstrip('#')
        return (int(color[0:2], 16) / 255, int(color[2:4], 16) / 255, int(color[4:6], 16) / 255)
    except (ValueError, IndexError, AttributeError):
        return fallback


class IdeaCanvas(Gtk.DrawingArea):
    """Infinite pan/zoom surface for idea nodes."""

    COLORS = {
        'bg_primary': (0.008, 0.024, 0.090),      # #020617
        'grid_dots': (0.278, 0.333, 0.412),       # #475569
        'border_subtle': (1.0, 1.0, 1.0),         # drawn at low alpha
        'border_selected': (0.231, 0.510, 0.965), # #3b82f6
        'connection': (0.392, 0.455, 0.545),      # #64748b
        'text_primary': (0.945, 0.961, 0.976),    # #f1f5f9
        'text_secondary': (0.580, 0.639, 0.722),  # #94a3b8
        'busy': (0.376, 0.647, 0.980),            # #60a5fa
        'error': (0.973, 0.443, 0.443),           # #f87171
    }

    NODE_PADDING = 12
    HEADER_HEIGHT = 28
    CORNER_RADIUS = 12
    GRID_SIZE = 40
    # Pixels per discrete wheel notch, so notched and smooth scrolling feel alike
    WHEEL_STEP_PIXELS = 100.0

    def __init__(self, graph: GraphStore, dispatcher: NodeActionDispatcher,
                 viewport: Optional[ViewportController] = None):
        super().__init__()

        self.graph = graph
        self.dispatcher = dispatcher
        self.viewport = viewport or ViewportController()
        self.machine = InteractionMachine(graph, self.viewport)

        # Pointer tracking
        self.last_mouse_x = 0.0
        self.last_mouse_y = 0.0
        self.hovered_node_id: Optional[str] = None
        self._drag_start = Point(0.0, 0.0)

        # Decoded image surfaces keyed by node id (None = undecodable)
        self._image_cache: Dict[str, Optional[cairo.ImageSurface]] = {}

        # Outstanding generative actions; held so they are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

        self._context_popover: Optional[Gtk.PopoverMenu] = None
        self._editor: Optional[NodeEditorPopover] = None

        # Canvas settings
        self.show_grid = True

        # Callbacks
        self.on_selection_changed: Optional[Callable[[int], None]] = None
        self.on_tool_changed: Optional[Callable[[ToolMode], None]] = None

        self.graph.on_changed = self._on_model_changed
        self.viewport.on_changed = self.queue_draw
        self.machine.on_tool_changed = self._on_tool_changed

        # Setup widget
        self.set_draw_func(self._on_draw)
        self.set_focusable(True)
        self.set_can_focus(True)
        self._setup_event_controllers()
        self.set_hexpand(True)
        self.set_vexpand(True)

    def _setup_event_controllers(self):
        """Setup mouse event controllers."""
        # Press/move/release for every button
        drag_ctrl = Gtk.GestureDrag()
        drag_ctrl.set_button(0)
        drag_ctrl.connect("drag-begin", self._on_drag_begin)
        drag_ctrl.connect("drag-update", self._on_drag_update)
        drag_ctrl.connect("drag-end", self._on_drag_end)
        self.add_controller(drag_ctrl)

        # Double-click to edit
        click_ctrl = Gtk.GestureClick()
        click_ctrl.set_button(BUTTON_PRIMARY)
        click_ctrl.connect("pressed", self._on_click)
        self.add_controller(click_ctrl)

        # Right-click for context menu
        right_click = Gtk.GestureClick()
        right_click.set_button(Gdk.BUTTON_SECONDARY)
        right_click.connect("pressed", self._on_right_click)
        self.add_controller(right_click)

        motion_ctrl = Gtk.EventControllerMotion()
        motion_ctrl.connect("motion", self._on_motion)
        motion_ctrl.connect("leave", self._on_leave)
        self.add_controller(motion_ctrl)

        scroll_ctrl = Gtk.EventControllerScroll()
        scroll_ctrl.set_flags(Gtk.EventControllerScrollFlags.BOTH_AXES)
        scroll_ctrl.connect("scroll", self._on_scroll)
        self.add_controller(scroll_ctrl)

        # Tool switching (only while the canvas has focus)
        key_ctrl = Gtk.EventControllerKey()
        key_ctrl.connect("key-pressed", self._on_key_pressed)
        self.add_controller(key_ctrl)

    def _on_model_changed(self):
        live = {n.id for n in self.graph.nodes}
        for node_id in [nid for nid in self._image_cache if nid not in live]:
            del self._image_cache[node_id]
        if self.on_selection_changed:
            self.on_selection_changed(len(self.graph.selection))
        self.queue_draw()

    # ==================== Actions ====================

    def run_action(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule a generative action on the GLib-driven asyncio loop."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def expand_node(self, node_id: str):
        self.run_action(self.dispatcher.expand(node_id))

    def visualize_node(self, node_id: str):
        self.run_action(self.dispatcher.visualize(node_id))

    def synthesize_selection(self):
        if len(self.graph.selection) != 2:
            return
        self.run_action(self.dispatcher.synthesize())

    def delete_node(self, node_id: str):
        self.graph.delete_node(node_id)

    def add_node_at(self, x: float, y: float) -> str:
        return self.machine.add_node(Point(x, y))

    def add_node_at_center(self) -> str:
        return self.add_node_at(self.get_width() / 2, self.get_height() / 2)

    def set_tool(self, tool: ToolMode):
        self.machine.set_tool(tool)

    def zoom_in(self):
        self.viewport.zoom_in(Point(self.get_width() / 2, self.get_height() / 2))

    def zoom_out(self):
        self.viewport.zoom_out(Point(self.get_width() / 2, self.get_height() / 2))

    def zoom_to_100(self):
        self.viewport.reset_zoom(Point(self.get_width() / 2, self.get_height() / 2))

    def zoom_to_fit(self):
        self.viewport.fit_bounds(self.graph.bounds(), self.get_width(), self.get_height())

    def toggle_grid(self):
        self.show_grid = not self.show_grid
        self.queue_draw()

    # ==================== Drawing ====================

    def _on_draw(self, area, cr, width, height):
        """Main drawing function."""
        cr.save()

        cr.set_source_rgb(*self.COLORS['bg_primary'])
        cr.paint()

        if self.show_grid:
            self._draw_grid(cr, width, height)

        state = self.viewport.state
        cr.translate(state.offset_x, state.offset_y)
        cr.scale(state.scale, state.scale)

        # Connections behind nodes
        self._draw_connections(cr)

        for node in self.graph.nodes:
            self._draw_node(cr, node)

        cr.restore()

    def _draw_grid(self, cr, width: float, height: float):
        """Draw dot grid pattern."""
        cr.save()
        cr.set_source_rgba(*self.COLORS['grid_dots'], 0.2)

        state = self.viewport.state
        effective_grid = self.GRID_SIZE * state.scale
        offset_x = state.offset_x % effective_grid
        offset_y = state.offset_y % effective_grid

        x = offset_x
        while x < width:
            y = offset_y
            while y < height:
                cr.arc(x, y, 1.0, 0, 2 * math.pi)
                cr.fill()
                y += effective_grid
            x += effective_grid

        cr.restore()

    def _draw_connections(self, cr):
        """Draw bezier connections between node centers."""
        cr.save()
        cr.set_source_rgb(*self.COLORS['connection'])
        cr.set_line_width(2)
        cr.set_line_cap(cairo.LINE_CAP_ROUND)

        for connection in self.graph.connections:
            from_node = self.graph.get_node(connection.from_id)
            to_node = self.graph.get_node(connection.to_id)
            if from_node is None or to_node is None:
                # delete_node cascades, so this means a caller linked an unknown id
                logger.warning(f"Connection {connection.id} has a missing endpoint")
                continue
            curve = compute_connection_curve(node_center(from_node), node_center(to_node))

            cr.move_to(*curve.start)
            cr.curve_to(*curve.control1, *curve.control2, *curve.end)
            cr.stroke()

        cr.restore()

    def _draw_node(self, cr, node: Node):
        """Draw a single node."""
        x, y, w, h = node.x, node.y, node.width, node.height
        is_selected = self.graph.is_selected(node.id)
        is_hovered = self.hovered_node_id == node.id
        radius = self.CORNER_RADIUS

        cr.save()

        self._draw_rounded_rect(cr, x, y, w, h, radius)
        cr.set_source_rgb(*_hex_to_rgb(node.color))
        cr.fill_preserve()

        if is_selected:
            # Glow effect for selected
            cr.save()
            for i in range(3):
                alpha = 0.3 - i * 0.08
                cr.set_source_rgba(*self.COLORS['border_selected'], alpha)
                self._draw_rounded_rect(cr, x - i * 2, y - i * 2,
                                        w + i * 4, h + i * 4, radius + i * 2)
                cr.stroke()
            cr.restore()
            self._draw_rounded_rect(cr, x, y, w, h, radius)
            cr.set_source_rgb(*self.COLORS['border_selected'])
            cr.set_line_width(2)
        else:
            cr.set_source_rgba(*self.COLORS['border_subtle'], 0.2 if is_hovered else 0.1)
            cr.set_line_width(1)
        cr.stroke()

        # Header strip
        cr.set_source_rgba(*self.COLORS['border_subtle'], 0.05)
        cr.move_to(x, y + self.HEADER_HEIGHT)
        cr.line_to(x + w, y + self.HEADER_HEIGHT)
        cr.stroke()
        self._draw_text(cr, node.kind.value, x + self.NODE_PADDING, y + 7,
                        w - self.NODE_PADDING * 2, 16, self.COLORS['text_secondary'], "Monospace 8")

        body_y = y + self.HEADER_HEIGHT + self.NODE_PADDING / 2
        body_w = w - self.NODE_PADDING * 2
        body_h = h - self.HEADER_HEIGHT - self.NODE_PADDING * 1.5

        if node.kind == NodeKind.IMAGE:
            self._draw_image_body(cr, node, x + self.NODE_PADDING, body_y, body_w, body_h)
        elif node.content:
            self._draw_text(cr, node.content, x + self.NODE_PADDING, body_y,
                            body_w, body_h, self.COLORS['text_primary'], "Sans 10")
        else:
            self._draw_text(cr, "Start typing or ask for ideas...", x + self.NODE_PADDING, body_y,
                            body_w, body_h, self.COLORS['text_secondary'], "Sans Italic 10")

        if node.last_error:
            self._draw_text(cr, f"! {node.last_error}", x + self.NODE_PADDING, y + h - 20,
                            body_w, 16, self.COLORS['error'], "Sans 8")

        if node.is_busy:
            self._draw_rounded_rect(cr, x, y, w, h, radius)
            cr.set_source_rgba(0, 0, 0, 0.35)
            cr.fill()
            self._draw_text(cr, "Thinking...", x + w / 2 - 30, y + h / 2 - 8,
                            80, 16, self.COLORS['busy'], "Sans Bold 9")

        cr.restore()

    def _draw_image_body(self, cr, node: Node, x: float, y: float, w: float, h: float):
        caption_h = 32
        surface = self._image_surface(node)
        if surface is not None and surface.get_width() > 0 and surface.get_height() > 0:
            img_h = max(h - caption_h, 1)
            factor = min(w / surface.get_width(), img_h / surface.get_height())
            cr.save()
            cr.rectangle(x, y, w, img_h)
            cr.clip()
            cr.translate(x + (w - surface.get_width() * factor) / 2, y)
            cr.scale(factor, factor)
            cr.set_source_surface(surface, 0, 0)
            cr.paint()
            cr.restore()
        else:
            self._draw_text(cr, "Image unavailable", x, y, w, 16,
                            self.COLORS['text_secondary'], "Sans Italic 9")

        self._draw_text(cr, f'"{node.content}"', x, y + h - caption_h + 4, w, caption_h - 4,
                        self.COLORS['text_secondary'], "Sans Italic 8")

    def _image_surface(self, node: Node) -> Optional[cairo.ImageSurface]:
        """Decode (once) the PNG behind a node's data URI."""
        if node.id in self._image_cache:
            return self._image_cache[node.id]

        surface = None
        if node.image_data and node.image_data.startswith("data:"):
            try:
                payload = node.image_data.split(",", 1)[1]
                surface = cairo.ImageSurface.create_from_png(io.BytesIO(base64.b64decode(payload)))
            except (IndexError, ValueError, binascii.Error, cairo.Error, MemoryError) as e:
                logger.warning(f"Could not decode image for node {node.id}: {e}")
                surface = None
        self._image_cache[node.id] = surface
        return surface

    def _draw_text(self, cr, text: str, x: float, y: float, max_width: float, max_height: float,
                   color, font: str):
        """Draw wrapped, ellipsized text inside a box."""
        layout = PangoCairo.create_layout(cr)
        layout.set_font_description(Pango.FontDescription.from_string(font))
        layout.set_width(int(max(max_width, 1) * Pango.SCALE))
        layout.set_height(int(max(max_height, 1) * Pango.SCALE))
        layout.set_wrap(Pango.WrapMode.WORD_CHAR)
        layout.set_ellipsize(Pango.EllipsizeMode.END)
        layout.set_text(text, -1)

        cr.set_source_rgb(*color)
        cr.move_to(x, y)
        PangoCairo.show_layout(cr, layout)

    def _draw_rounded_rect(self, cr, x: float, y: float, w: float, h: float, radius: float):
        """Draw a rounded rectangle path."""
        cr.new_path()
        cr.arc(x + w - radius, y + radius, radius, -math.pi / 2, 0)
        cr.arc(x + w - radius, y + h - radius, radius, 0, math.pi / 2)
        cr.arc(x + radius, y + h - radius, radius, math.pi / 2, math.pi)
        cr.arc(x + radius, y + radius, radius, math.pi, 3 * math.pi / 2)
        cr.close_path()

    # ==================== Input ====================

    def _find_node_at(self, x: float, y: float) -> Optional[Node]:
        """Find the node at the given screen coordinates."""
        return self.graph.node_at(self.viewport.screen_to_world(Point(x, y)))

    def _on_tool_changed(self, tool: ToolMode):
        self._update_cursor()
        if self.on_tool_changed:
            self.on_tool_changed(tool)

    def _update_cursor(self):
        if self.machine.is_panning:
            self.set_cursor_from_name("grabbing")
        elif self.machine.tool == ToolMode.HAND:
            self.set_cursor_from_name("grab")
        else:
            self.set_cursor_from_name("default")

    def _on_drag_begin(self, gesture, start_x, start_y):
        """Pointer pressed with any button."""
        self.grab_focus()
        self._drag_start = Point(start_x, start_y)

        state = gesture.get_current_event_state()
        shift = bool(state & Gdk.ModifierType.SHIFT_MASK)
        target = self._find_node_at(start_x, start_y)

        self.machine.pointer_down(
            gesture.get_current_button(),
            target.id if target else None,
            shift,
            self._drag_start,
        )
        self._update_cursor()

    def _on_drag_update(self, gesture, offset_x, offset_y):
        self.machine.pointer_move(Point(self._drag_start.x + offset_x, self._drag_start.y + offset_y))

    def _on_drag_end(self, gesture, offset_x, offset_y):
        self.machine.pointer_up()
        self._update_cursor()

    def _on_click(self, gesture, n_press, x, y):
        """Double click opens the text editor for text nodes."""
        if n_press != 2 or self.machine.tool != ToolMode.SELECT:
            return
        node = self._find_node_at(x, y)
        if node and node.kind == NodeKind.TEXT:
            self.start_editing(node.id)

    def _on_motion(self, controller, x, y):
        self.last_mouse_x = x
        self.last_mouse_y = y

        hovered = self._find_node_at(x, y)
        hovered_id = hovered.id if hovered else None
        if hovered_id != self.hovered_node_id:
            self.hovered_node_id = hovered_id
            self.queue_draw()

    def _on_leave(self, controller):
        if self.hovered_node_id:
            self.hovered_node_id = None
            self.queue_draw()

    def _on_scroll(self, controller, dx, dy):
        """Ctrl/Cmd + wheel zooms at the pointer; a plain wheel pans."""
        state = controller.get_current_event_state()
        modifier = bool(state & (Gdk.ModifierType.CONTROL_MASK | Gdk.ModifierType.META_MASK))

        if controller.get_unit() == Gdk.ScrollUnit.WHEEL:
            dx *= self.WHEEL_STEP_PIXELS
            dy *= self.WHEEL_STEP_PIXELS

        self.machine.wheel(dx, dy, modifier, Point(self.last_mouse_x, self.last_mouse_y))
        return True

    def _on_key_pressed(self, controller, keyval, keycode, state):
        if state & (Gdk.ModifierType.CONTROL_MASK | Gdk.ModifierType.ALT_MASK):
            return False
        if keyval in (Gdk.KEY_v, Gdk.KEY_V):
            self.set_tool(ToolMode.SELECT)
            return True
        if keyval in (Gdk.KEY_h, Gdk.KEY_H):
            self.set_tool(ToolMode.HAND)
            return True
        return False

    # ==================== Editing ====================

    def start_editing(self, node_id: str):
        node = self.graph.get_node(node_id)
        if node is None:
            return
        if self._editor is not None:
            self._editor.popdown()

        top_left = self.viewport.world_to_screen(Point(node.x, node.y))
        rect = Gdk.Rectangle()
        rect.x = int(top_left.x)
        rect.y = int(top_left.y)
        rect.width = max(int(node.width * self.viewport.scale), 1)
        rect.height = max(int(node.height * self.viewport.scale), 1)

        editor = NodeEditorPopover(node.content)
        editor.on_text_changed = lambda text: self.graph.update_content(node_id, text)
        editor.set_parent(self)
        editor.set_pointing_to(rect)

        def _on_editor_closed(p):
            def _do_unparent():
                if self._editor is p:
                    self._editor = None
                p.unparent()
                return False
            GLib.idle_add(_do_unparent)
        editor.connect("closed", _on_editor_closed)

        self._editor = editor
        editor.popup()

    # ==================== Context menu ====================

    def _on_right_click(self, gesture, n_press, x, y):
        """Handle right-click for context menu."""
        clicked_node = self._find_node_at(x, y)

        menu = Gio.Menu()
        action_group = Gio.SimpleActionGroup()

        def add_action(name: str, label: str, callback: Callable[[], Any], enabled: bool = True):
            action = Gio.SimpleAction.new(name, None)
            action.set_enabled(enabled)
            action.connect("activate", lambda a, p: callback())
            action_group.add_action(action)
            menu.append(label, f"canvas.{name}")

        if clicked_node:
            node_id = clicked_node.id
            idle = not clicked_node.is_busy
            if clicked_node.kind == NodeKind.TEXT:
                add_action("expand-node", "Expand Ideas", lambda: self.expand_node(node_id),
                           idle and bool(clicked_node.content.strip()))
                add_action("visualize-node", "Visualize", lambda: self.visualize_node(node_id), idle)
                add_action("edit-node", "Edit Text", lambda: self.start_editing(node_id))
            add_action("delete-node", "Delete", lambda: self.delete_node(node_id))
        else:
            add_action("add-node", "Add Node Here", lambda: self.add_node_at(x, y))

        self.insert_action_group("canvas", action_group)

        # Unparent previous popover if still attached
        if self._context_popover is not None:
            self._context_popover.unparent()
            self._context_popover = None

        popover = Gtk.PopoverMenu.new_from_model(menu)
        popover.set_parent(self)
        popover.set_has_arrow(True)

        # Defer unparent to idle so the action callback fires first
        def _on_popover_closed(p):
            def _do_unparent():
                if self._context_popover is p:
                    p.unparent()
                    self._context_popover = None
                return False
            GLib.idle_add(_do_unparent)
        popover.connect("closed", _on_popover_closed)

        self._context_popover = popover

        rect = Gdk.Rectangle()
        rect.x = int(x)
        rect.y = int(y)
        rect.width = 1
        rect.height = 1
        popover.set_pointing_to(rect)
        popover.popup()
