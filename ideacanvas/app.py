"""Main IdeaCanvas application."""

import asyncio
import logging
import os
import sys
from typing import Optional

import gi
gi.require_version("Gtk", "4.0")
gi.require_version("Adw", "1")
gi.require_version("Gdk", "4.0")
from gi.repository import Gtk, Gio, Adw
from gi.events import GLibEventLoopPolicy

from ideacanvas import __version__, __app_id__, config
from ideacanvas.actions import NodeActionDispatcher
from ideacanvas.canvas import IdeaCanvas
from ideacanvas.generative import OpenAIGenerativeService
from ideacanvas.graph import GraphStore
from ideacanvas.interaction import ToolMode
from ideacanvas.widgets import CanvasHelpDialog


logger = logging.getLogger(__name__)

WELCOME_TEXT = (
    "Welcome to IdeaCanvas.\n\n"
    "Double-click text to edit.\n"
    "Right-click and choose \"Expand Ideas\" to generate related ideas."
)


class IdeaCanvasWindow(Adw.ApplicationWindow):
    """Main application window."""

    def __init__(self, app: Adw.Application):
        super().__init__(application=app)

        self.graph = GraphStore()
        self.dispatcher = NodeActionDispatcher(
            self.graph,
            OpenAIGenerativeService(),
            style_instruction=config.get_style_instruction,
        )
        self.dispatcher.on_error = self._show_toast
        self.dispatcher.on_synthesizing_changed = self._on_synthesizing_changed
        self._synthesis_toast: Optional[Adw.Toast] = None

        # Window setup
        self.set_title("IdeaCanvas")
        self.set_default_size(1400, 900)

        self._build_ui()
        self._setup_shortcuts()

        self.graph.add_node(100, 100, content=WELCOME_TEXT)

    def _build_ui(self):
        """Build the main UI layout."""
        main_box = Gtk.Box(orientation=Gtk.Orientation.VERTICAL)

        header = self._build_header()
        main_box.append(header)

        self.canvas = IdeaCanvas(self.graph, self.dispatcher)
        self.canvas.on_selection_changed = self._on_selection_changed
        self.canvas.on_tool_changed = self._on_tool_changed

        # Wrap in toast overlay for in-app notifications
        self.toast_overlay = Adw.ToastOverlay()
        self.toast_overlay.set_child(self.canvas)
        self.toast_overlay.set_vexpand(True)
        main_box.append(self.toast_overlay)

        self.set_content(main_box)
        self._on_selection_changed(0)

    def _build_header(self) -> Adw.HeaderBar:
        """Build the header bar."""
        header = Adw.HeaderBar()
        header.add_css_class("flat")

        # Menu button
        menu_btn = Gtk.MenuButton()
        menu_btn.set_icon_name("open-menu-symbolic")
        menu_btn.set_tooltip_text("Menu")

        menu = Gio.Menu()

        view_section = Gio.Menu()
        view_section.append("Zoom In", "win.zoom-in")
        view_section.append("Zoom Out", "win.zoom-out")
        view_section.append("Zoom to Fit", "win.zoom-fit")
        view_section.append("Zoom to 100%", "win.zoom-100")
        view_section.append("Toggle Grid", "win.toggle-grid")
        menu.append_section(None, view_section)

        help_section = Gio.Menu()
        help_section.append("Canvas Controls", "win.show-help")
        help_section.append("About IdeaCanvas", "win.show-about")
        menu.append_section(None, help_section)

        popover = Gtk.PopoverMenu()
        popover.set_menu_model(menu)
        menu_btn.set_popover(popover)
        header.pack_start(menu_btn)

        # Tool toggles
        tools_box = Gtk.Box(orientation=Gtk.Orientation.HORIZONTAL)
        tools_box.add_css_class("linked")

        self.select_btn = Gtk.ToggleButton()
        self.select_btn.set_icon_name("input-mouse-symbolic")
        self.select_btn.set_tooltip_text("Select (V)")
        self.select_btn.set_active(True)
        self.select_btn.connect("toggled", self._on_tool_toggled, ToolMode.SELECT)
        tools_box.append(self.select_btn)

        self.hand_btn = Gtk.ToggleButton()
        self.hand_btn.set_icon_name("view-pan-symbolic")
        self.hand_btn.set_tooltip_text("Pan (H)")
        self.hand_btn.set_group(self.select_btn)
        self.hand_btn.connect("toggled", self._on_tool_toggled, ToolMode.HAND)
        tools_box.append(self.hand_btn)

        header.pack_start(tools_box)

        add_btn = Gtk.Button(label="Add Node")
        add_btn.set_tooltip_text("Add Node (Ctrl+N)")
        add_btn.connect("clicked", lambda b: self._add_node())
        header.pack_start(add_btn)

        title = Gtk.Label(label="IdeaCanvas")
        title.add_css_class("title")
        header.set_title_widget(title)

        help_btn = Gtk.Button()
        help_btn.set_icon_name("help-about-symbolic")
        help_btn.set_tooltip_text("Canvas Controls (F1)")
        help_btn.connect("clicked", lambda b: self._show_help())
        header.pack_end(help_btn)

        self.synthesize_btn = Gtk.Button(label="Synthesize")
        self.synthesize_btn.add_css_class("suggested-action")
        self.synthesize_btn.set_tooltip_text("Merge the two selected nodes into a new idea")
        self.synthesize_btn.connect("clicked", lambda b: self.canvas.synthesize_selection())
        header.pack_end(self.synthesize_btn)

        return header

    def _setup_shortcuts(self):
        """Setup keyboard shortcuts."""
        actions = [
            ("add-node", self._add_node, "<Control>n"),
            ("zoom-in", lambda: self.canvas.zoom_in(), "<Control>plus"),
            ("zoom-out", lambda: self.canvas.zoom_out(), "<Control>minus"),
            ("zoom-fit", lambda: self.canvas.zoom_to_fit(), "<Control>0"),
            ("zoom-100", lambda: self.canvas.zoom_to_100(), "<Control>1"),
            ("toggle-grid", lambda: self.canvas.toggle_grid(), None),
            ("show-help", self._show_help, "F1"),
            ("show-about", self._show_about, None),
            ("quit", lambda: self.close(), "<Control>q"),
        ]

        for name, callback, accel in actions:
            action = Gio.SimpleAction.new(name, None)
            action.connect("activate", lambda a, p, cb=callback: cb())
            self.add_action(action)

            if accel:
                self.get_application().set_accels_for_action(f"win.{name}", [accel])

        # Additional accelerators
        self.get_application().set_accels_for_action("win.zoom-in", ["<Control>plus", "<Control>equal"])

    def _add_node(self):
        self.canvas.add_node_at_center()
        self.canvas.grab_focus()

    def _on_tool_toggled(self, button, tool: ToolMode):
        if button.get_active():
            self.canvas.set_tool(tool)

    def _on_tool_changed(self, tool: ToolMode):
        button = self.select_btn if tool == ToolMode.SELECT else self.hand_btn
        if not button.get_active():
            button.set_active(True)

    def _on_selection_changed(self, count: int):
        self.synthesize_btn.set_visible(count >= 2)
        self.synthesize_btn.set_label(f"Synthesize ({count})" if count >= 2 else "Synthesize")
        self.synthesize_btn.set_sensitive(count == 2 and not self.dispatcher.is_synthesizing)

    def _on_synthesizing_changed(self, active: bool):
        if active:
            self._synthesis_toast = Adw.Toast(title="Synthesizing concepts...")
            self._synthesis_toast.set_timeout(0)
            self.toast_overlay.add_toast(self._synthesis_toast)
        elif self._synthesis_toast is not None:
            self._synthesis_toast.dismiss()
            self._synthesis_toast = None
        self._on_selection_changed(len(self.graph.selection))

    def _show_help(self):
        dialog = CanvasHelpDialog(self)
        dialog.present()

    def _show_about(self):
        about = Adw.AboutWindow(
            transient_for=self,
            application_name="IdeaCanvas",
            application_icon="applications-graphics-symbolic",
            version=__version__,
            comments="An infinite canvas for brainstorming with generative help",
            license_type=Gtk.License.MIT_X11,
        )
        about.present()

    def _show_toast(self, message: str):
        """Show a toast notification."""
        toast = Adw.Toast(title=message)
        toast.set_timeout(3)
        self.toast_overlay.add_toast(toast)


class IdeaCanvasApp(Adw.Application):
    """Main application class."""

    def __init__(self):
        super().__init__(
            application_id=__app_id__,
            flags=Gio.ApplicationFlags.DEFAULT_FLAGS
        )
        self.window: Optional[IdeaCanvasWindow] = None

    def do_startup(self):
        """Initialize application."""
        Adw.Application.do_startup(self)

        style_manager = Adw.StyleManager.get_default()
        style_manager.set_color_scheme(Adw.ColorScheme.FORCE_DARK)

        try:
            config.ensure_config()
        except OSError as e:
            logger.warning(f"Could not write default config: {e}")

        if not config.get_api_key():
            logger.warning("No OpenAI API key configured; generative actions will fail")

    def do_activate(self):
        """Activate application."""
        if not self.window:
            self.window = IdeaCanvasWindow(self)

        self.window.present()


def setup_logging():
    level = os.environ.get("IDEACANVAS_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    """Application entry point."""
    setup_logging()
    # Run asyncio on top of the GLib main loop so generative actions share the UI thread
    asyncio.set_event_loop_policy(GLibEventLoopPolicy())
    app = IdeaCanvasApp()
    return app.run(sys.argv)


if __name__ == "__main__":
    sys.exit(main())
