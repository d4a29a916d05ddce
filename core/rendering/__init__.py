"""PDF rendering of documents."""

from core.rendering.config import RenderConfig, RenderConfigStore, TEMPLATES
from core.rendering.layout import LayoutPlan, build_layout
from core.rendering.renderer import DocumentRenderer

__all__ = [
    "RenderConfig", "RenderConfigStore", "TEMPLATES",
    "LayoutPlan", "build_layout",
    "DocumentRenderer",
]
