"""Environment and dependency preflight checks.

IdeaCanvas needs a graphical session, GTK 4 + libadwaita bindings with
asyncio integration (PyGObject >= 3.50), pycairo, and the OpenAI SDK.
Set IDEACANVAS_SKIP_PREFLIGHT=1 to bypass (useful for development).
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PreflightResult:
    ok: bool
    message: str


def _has_display() -> bool:
    return bool(os.environ.get("WAYLAND_DISPLAY") or os.environ.get("DISPLAY"))


def _check_python_deps() -> Optional[str]:
    """Return an error message if required deps are missing."""
    try:
        import cairo  # type: ignore[import-not-found]  # noqa: F401
    except Exception as exc:  # pylint: disable=broad-except
        return (
            "Missing Python dependency 'pycairo'. "
            "Install it with pip (pycairo) and ensure cairo is available. "
            f"Underlying error: {exc}"
        )

    try:
        import gi  # type: ignore[import-not-found]

        gi.require_version("Gtk", "4.0")
        gi.require_version("Adw", "1")
        gi.require_version("Gdk", "4.0")
        gi.require_version("PangoCairo", "1.0")
        from gi.repository import Gtk, Adw, Gdk, PangoCairo  # type: ignore[import-not-found]  # noqa: F401
        from gi.events import GLibEventLoopPolicy  # type: ignore[import-not-found]  # noqa: F401
    except Exception as exc:  # pylint: disable=broad-except
        return (
            "Missing GTK 4/libadwaita bindings or PyGObject is older than 3.50. "
            "Install gtk4, libadwaita and gobject-introspection from your distribution, "
            "then `pip install 'PyGObject>=3.50'`. "
            f"Underlying error: {exc}"
        )

    try:
        import openai  # type: ignore[import-not-found]  # noqa: F401
    except Exception as exc:  # pylint: disable=broad-except
        return f"Missing Python dependency 'openai'. Underlying error: {exc}"

    return None


def run_preflight(
    *,
    require_display: bool = True,
    check_deps: bool = True,
) -> PreflightResult:
    """Run checks and return a structured result."""
    if os.environ.get("IDEACANVAS_SKIP_PREFLIGHT") == "1":
        return PreflightResult(True, "Preflight skipped via IDEACANVAS_SKIP_PREFLIGHT=1")

    if require_display and not _has_display():
        return PreflightResult(
            False,
            "IdeaCanvas needs a graphical session but neither WAYLAND_DISPLAY nor DISPLAY is set. "
            "Set IDEACANVAS_SKIP_PREFLIGHT=1 to bypass.",
        )

    if check_deps:
        dep_error = _check_python_deps()
        if dep_error:
            return PreflightResult(False, dep_error)

    return PreflightResult(True, "Preflight OK")


def run_preflight_or_die(
    *,
    require_display: bool = True,
    check_deps: bool = True,
) -> None:
    result = run_preflight(
        require_display=require_display,
        check_deps=check_deps,
    )
    if result.ok:
        return

    sys.stderr.write("\nIdeaCanvas preflight check failed:\n")
    sys.stderr.write(result.message)
    sys.stderr.write("\n\n")
    sys.stderr.write(
        "Suggested setup:\n"
        "  install GTK 4, libadwaita and gobject-introspection from your distribution\n"
        "  pip install -e .\n\n"
    )
    raise SystemExit(1)
