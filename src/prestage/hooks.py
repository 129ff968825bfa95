"""Build lifecycle hooks.

Subclass BuildHooks and override the methods you need. Every method may be
a coroutine.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prestage.core.routes import RouteRecord
    from prestage.core.types import AppContext


class BuildHooks:
    """No-op lifecycle hooks."""

    def included_routes(self, paths: list[str], routes: Sequence[RouteRecord]) -> list[str]:
        """Select the paths to render from the discovered ones.

        A module-level ``included_routes`` in the server entry takes
        precedence over this method.
        """
        return paths

    def on_before_page_render(self, path: str, index_html: str, ctx: AppContext) -> str | None:
        """Return a replacement shell template for the page, or None."""
        return None

    def on_page_rendered(self, path: str, html: str, ctx: AppContext) -> str | None:
        """Return replacement markup for the rendered page, or None."""
        return None

    def on_finished(self) -> None:
        """Called once after every page was written."""
