"""Custom widgets for the IdeaCanvas application."""

from typing import Optional, Callable
import gi

gi.require_version("Gtk", "4.0")
from gi.repository import Gtk, Gdk


class NodeEditorPopover(Gtk.Popover):
    """Popover with a text view for editing a node's content in place."""

    def __init__(self, text: str):
        super().__init__()

        # Called with the full text on every edit
        self.on_text_changed: Optional[Callable[[str], None]] = None

        self.set_has_arrow(True)
        self.set_autohide(True)

        scrolled = Gtk.ScrolledWindow()
        scrolled.set_policy(Gtk.PolicyType.NEVER, Gtk.PolicyType.AUTOMATIC)
        scrolled.set_min_content_width(320)
        scrolled.set_min_content_height(160)

        self.text_view = Gtk.TextView()
        self.text_view.set_wrap_mode(Gtk.WrapMode.WORD_CHAR)
        self.text_view.set_left_margin(8)
        self.text_view.set_right_margin(8)
        self.text_view.set_top_margin(8)
        self.text_view.set_bottom_margin(8)
        self.text_view.add_css_class("node-editor")

        buffer = self.text_view.get_buffer()
        buffer.set_text(text)
        buffer.connect("changed", self._on_buffer_changed)

        scrolled.set_child(self.text_view)
        self.set_child(scrolled)

        # Escape closes, text is already applied
        key_ctrl = Gtk.EventControllerKey()
        key_ctrl.connect("key-pressed", self._on_key_pressed)
        self.add_controller(key_ctrl)

        self.connect("show", lambda w: self.text_view.grab_focus())

    def _on_buffer_changed(self, buffer):
        if self.on_text_changed:
            start, end = buffer.get_bounds()
            self.on_text_changed(buffer.get_text(start, end, False))

    def _on_key_pressed(self, controller, keyval, keycode, state):
        if keyval == Gdk.KEY_Escape:
            self.popdown()
            return True
        return False


class CanvasHelpDialog(Gtk.Window):
    """Mouse and tool reference for the canvas."""

    SECTIONS = {
        "Navigation": [
            ("Pan Canvas", "Scroll, Middle-click drag, or Hand tool"),
            ("Zoom at Pointer", "Ctrl+Scroll"),
            ("Zoom In / Out", "Ctrl++ / Ctrl+-"),
            ("Zoom to Fit", "Ctrl+0"),
            ("Zoom to 100%", "Ctrl+1"),
        ],
        "Nodes": [
            ("Select / Drag", "Click and drag"),
            ("Add to Selection", "Shift+Click"),
            ("Edit Text", "Double-click"),
            ("Expand, Visualize, Delete", "Right-click a node"),
            ("Synthesize", "Select two nodes, then Synthesize"),
        ],
        "Tools": [
            ("Select Tool", "V"),
            ("Hand Tool", "H"),
            ("Add Node", "Ctrl+N"),
            ("Help", "F1"),
        ],
    }

    def __init__(self, parent: Gtk.Window):
        super().__init__()

        self.set_transient_for(parent)
        self.set_modal(True)
        self.set_default_size(460, 520)
        self.set_title("Canvas Controls")

        scrolled = Gtk.ScrolledWindow()
        scrolled.set_policy(Gtk.PolicyType.NEVER, Gtk.PolicyType.AUTOMATIC)

        box = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=24)
        box.set_margin_start(24)
        box.set_margin_end(24)
        box.set_margin_top(24)
        box.set_margin_bottom(24)

        for section, entries in self.SECTIONS.items():
            section_box = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=8)

            title = Gtk.Label(label=section.upper())
            title.set_halign(Gtk.Align.START)
            title.add_css_class("heading")
            section_box.append(title)

            for action, keys in entries:
                row = Gtk.Box(orientation=Gtk.Orientation.HORIZONTAL, spacing=12)

                action_label = Gtk.Label(label=action)
                action_label.set_halign(Gtk.Align.START)
                action_label.set_hexpand(True)
                row.append(action_label)

                keys_label = Gtk.Label(label=keys)
                keys_label.set_halign(Gtk.Align.END)
                keys_label.add_css_class("dim-label")
                row.append(keys_label)

                section_box.append(row)

            box.append(section_box)

        scrolled.set_child(box)
        self.set_child(scrolled)

        # Close on Escape
        key_ctrl = Gtk.EventControllerKey()
        key_ctrl.connect("key-pressed", self._on_key_pressed)
        self.add_controller(key_ctrl)

    def _on_key_pressed(self, controller, keyval, keycode, state):
        if keyval == Gdk.KEY_Escape:
            self.close()
            return True
        return False
