"""Core type definitions shared with the application being pre-rendered."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from prestage.core.routes import RouteRecord


class StyleCollector(Protocol):
    """Collects styles emitted by components during one render pass.

    Components reach the collector through ``PageContext.style_collector``
    and register whatever they need; prestage only asks for the final
    ``<style>`` block.
    """

    def to_string(self, app_html: str) -> str: ...


@dataclass
class AppContext:
    """Application instance returned by the server entry's ``create_root``.

    Attributes:
        routes: Route tree of the application; None means no routes
        is_client: Whether the instance was created for the client
        path: Route path the instance is scoped to (None for discovery)
        get_style_collector: Optional factory for a per-render style collector
        on_app_rendered: Optional callback receiving (path, app_html, context)
            after the page body has been rendered
        extra: Free-form application state
    """

    routes: Sequence[RouteRecord] | None
    is_client: bool = False
    path: str | None = None
    get_style_collector: Callable[[], StyleCollector | Awaitable[StyleCollector]] | None = None
    on_app_rendered: Callable[[str, str, AppContext], Awaitable[None] | None] | None = None
    extra: dict[str, Any] = field(default_factory=dict)
