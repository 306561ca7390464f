"""Coordinate transforms between screen space and world space."""

from typing import NamedTuple, TYPE_CHECKING

if TYPE_CHECKING:
    from ideacanvas.graph import Node
    from ideacanvas.viewport import ViewportState


# Minimum horizontal reach of a connection's control points
CURVE_MIN_CONTROL_OFFSET = 50.0


class Point(NamedTuple):
    """A 2D point, in whichever space the caller says."""
    x: float
    y: float


class ConnectionCurve(NamedTuple):
    """Cubic Bezier from start to end through two control points."""
    start: Point
    control1: Point
    control2: Point
    end: Point


def screen_to_world(viewport: "ViewportState", point: Point) -> Point:
    """Map a screen-space point into world space."""
    return Point(
        (point.x - viewport.offset_x) / viewport.scale,
        (point.y - viewport.offset_y) / viewport.scale,
    )


def world_to_screen(viewport: "ViewportState", point: Point) -> Point:
    """Map a world-space point into screen space."""
    return Point(
        point.x * viewport.scale + viewport.offset_x,
        point.y * viewport.scale + viewport.offset_y,
    )


def node_center(node: "Node") -> Point:
    """World-space center of a node's stored rectangle."""
    return Point(node.x + node.width / 2, node.y + node.height / 2)


def compute_connection_curve(start: Point, end: Point) -> ConnectionCurve:
    """Build the S-curve drawn between two node centers.

    Both control points are pushed horizontally away from their endpoint by
    half the horizontal distance (never less than 50 units), so the curve
    leaves and enters each node horizontally whatever the vertical offset.
    """
    control_offset = max(abs(end.x - start.x) * 0.5, CURVE_MIN_CONTROL_OFFSET)
    return ConnectionCurve(
        start=Point(start.x, start.y),
        control1=Point(start.x + control_offset, start.y),
        control2=Point(end.x - control_offset, end.y),
        end=Point(end.x, end.y),
    )
