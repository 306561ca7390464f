"""Pan/zoom state for the canvas."""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Callable, Tuple

from ideacanvas.geometry import Point, screen_to_world, world_to_screen


logger = logging.getLogger(__name__)

MIN_SCALE = 0.1
MAX_SCALE = 3.0
ZOOM_SENSITIVITY = 0.001  # scale change per wheel unit
ZOOM_STEP = 0.1  # scale change per zoom in/out command


def clamp_scale(scale: float) -> float:
    return max(MIN_SCALE, min(MAX_SCALE, scale))


@dataclass(frozen=True)
class ViewportState:
    """Affine map from world to screen: screen = world * scale + offset."""
    offset_x: float = 0.0
    offset_y: float = 0.0
    scale: float = 1.0


class ViewportController:
    """Owns the viewport and turns pan/zoom gestures into new states."""

    def __init__(self, state: Optional[ViewportState] = None):
        self._state = state or ViewportState()

        # Callbacks
        self.on_changed: Optional[Callable[[], None]] = None

    @property
    def state(self) -> ViewportState:
        return self._state

    @property
    def scale(self) -> float:
        return self._state.scale

    def _set_state(self, state: ViewportState):
        if state == self._state:
            return
        self._state = state
        if self.on_changed:
            self.on_changed()

    def screen_to_world(self, point: Point) -> Point:
        return screen_to_world(self._state, point)

    def world_to_screen(self, point: Point) -> Point:
        return world_to_screen(self._state, point)

    def apply_pan(self, dx: float, dy: float):
        """Shift the view by a screen-space delta."""
        self._set_state(replace(
            self._state,
            offset_x=self._state.offset_x + dx,
            offset_y=self._state.offset_y + dy,
        ))

    def apply_zoom(self, anchor: Point, scale_delta: float):
        """Change scale by scale_delta, keeping the world point under anchor fixed."""
        before = self._state
        new_scale = clamp_scale(before.scale + scale_delta)
        anchor_world = screen_to_world(before, anchor)
        self._set_state(ViewportState(
            offset_x=anchor.x - anchor_world.x * new_scale,
            offset_y=anchor.y - anchor_world.y * new_scale,
            scale=new_scale,
        ))

    def handle_wheel(self, dx: float, dy: float, modifier: bool, anchor: Point):
        """Modifier+wheel zooms at the pointer; a plain wheel pans.

        Wheel deltas are already in screen units, so panning uses them as-is
        without dividing by scale.
        """
        if modifier:
            self.apply_zoom(anchor, -dy * ZOOM_SENSITIVITY)
        else:
            self.apply_pan(-dx, -dy)

    def zoom_in(self, anchor: Point):
        self.apply_zoom(anchor, ZOOM_STEP)

    def zoom_out(self, anchor: Point):
        self.apply_zoom(anchor, -ZOOM_STEP)

    def reset_zoom(self, anchor: Point):
        """Return to 100% around anchor."""
        self.apply_zoom(anchor, 1.0 - self._state.scale)

    def fit_bounds(self, bounds: Optional[Tuple[float, float, float, float]],
                   width: float, height: float, padding: float = 50.0):
        """Frame a world-space bounding box inside a width x height surface."""
        if bounds is None or width <= 0 or height <= 0:
            return
        min_x, min_y, max_x, max_y = bounds
        content_w = max(max_x - min_x, 1.0)
        content_h = max(max_y - min_y, 1.0)

        avail_w = max(width - padding * 2, 1.0)
        avail_h = max(height - padding * 2, 1.0)
        target_scale = clamp_scale(min(avail_w / content_w, avail_h / content_h, 1.0))

        # Zoom about the screen origin, then center the content
        self.apply_zoom(Point(self._state.offset_x, self._state.offset_y),
                        target_scale - self._state.scale)
        center = Point((min_x + max_x) / 2, (min_y + max_y) / 2)
        center_screen = self.world_to_screen(center)
        self.apply_pan(width / 2 - center_screen.x, height / 2 - center_screen.y)
        logger.debug(f"Fit {bounds} into {width}x{height} at scale {self._state.scale:.2f}")

    def reset(self):
        self._set_state(ViewportState())
