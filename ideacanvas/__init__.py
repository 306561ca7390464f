"""IdeaCanvas - an infinite pan/zoom canvas for brainstorming with generative help."""

__version__ = "1.0.0"
__app_id__ = "io.github.ideacanvas.IdeaCanvas"
