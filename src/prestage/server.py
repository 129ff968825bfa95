"""Server-side page rendering.

Resolves a request path against the application's route tree with an
aiohttp URL dispatcher and renders the matched route chain from the leaf
outward. Each component receives a PageContext whose ``outlet`` holds the
markup of the nested route.
"""

from __future__ import annotations

import html
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web
from aiohttp.test_utils import make_mocked_request

from prestage.core.invoke import invoke
from prestage.core.routes import RouteRecord, iter_route_chains, load_lazy_routes
from prestage.core.types import StyleCollector
from prestage.errors import RouteResponseError

logger = logging.getLogger(__name__)


@dataclass
class Head:
    """Document head metadata collected during a render pass."""

    title: str | None = None
    meta: list[dict[str, str]] = field(default_factory=list)
    links: list[dict[str, str]] = field(default_factory=list)
    scripts: list[dict[str, str]] = field(default_factory=list)
    html_attributes: dict[str, str] = field(default_factory=dict)
    body_attributes: dict[str, str] = field(default_factory=dict)

    def to_strings(self) -> list[str]:
        """Serialize head elements in insertion order, title first."""
        fragments: list[str] = []
        if self.title is not None:
            fragments.append(f"<title>{html.escape(self.title)}</title>")
        fragments.extend(f"<meta {format_attributes(attrs)}>" for attrs in self.meta)
        fragments.extend(f"<link {format_attributes(attrs)}>" for attrs in self.links)
        fragments.extend(f"<script {format_attributes(attrs)}></script>" for attrs in self.scripts)
        return fragments


def format_attributes(attributes: Mapping[str, str]) -> str:
    """Serialize an attribute mapping; empty values render as bare names."""
    return " ".join(
        name if value == "" else f'{name}="{html.escape(value)}"' for name, value in attributes.items()
    )


@dataclass
class PageContext:
    """State shared by the components of one render pass.

    Attributes:
        request: Synthetic request for the page
        params: Values of the matched path parameters
        head: Head metadata components may extend
        outlet: Markup of the nested route, empty at the leaf
        style_collector: Style collector of the render pass, if any
        modules: Module ids used by the render pass
    """

    request: web.Request
    params: dict[str, str] = field(default_factory=dict)
    head: Head = field(default_factory=Head)
    outlet: str = ""
    style_collector: StyleCollector | None = None
    modules: set[str] = field(default_factory=set)

    def use_module(self, module_id: str) -> None:
        """Report a module as used by the page."""
        self.modules.add(module_id)


@dataclass
class RenderedPage:
    """Result of rendering one page."""

    app_html: str
    html_attributes: str = ""
    body_attributes: str = ""
    meta_attributes: list[str] = field(default_factory=list)
    style_tag: str = ""
    modules: frozenset[str] | None = None


def create_request(path: str) -> web.Request:
    """Build the synthetic GET request used to render a path."""
    return make_mocked_request("GET", path, headers={"Host": "localhost"})


def route_pattern(path: str) -> str:
    """Translate a route path pattern into aiohttp resource syntax.

    ``:name`` segments become ``{name}``; a ``*`` segment matches the rest
    of the path.
    """
    segments = []
    for segment in path.split("/"):
        if segment.startswith(":"):
            segments.append(f"{{{segment[1:]}}}")
        elif segment == "*":
            segments.append("{tail:.*}")
        else:
            segments.append(segment)
    return "/".join(segments) or "/"


def build_router(
    routes: Sequence[RouteRecord],
) -> tuple[web.UrlDispatcher, dict[int, tuple[RouteRecord, ...]]]:
    """Build a URL dispatcher for an expanded route tree.

    When several chains share a pattern (a layout and its index route),
    the deepest chain wins.

    Returns:
        Dispatcher and a mapping from resource id to route chain
    """
    chains: dict[str, tuple[RouteRecord, ...]] = {}
    for path, chain in iter_route_chains(routes):
        pattern = route_pattern(path)
        if len(chain) >= len(chains.get(pattern, ())):
            chains[pattern] = chain

    router = web.UrlDispatcher()
    by_resource: dict[int, tuple[RouteRecord, ...]] = {}
    for pattern, chain in chains.items():
        resource = router.add_resource(pattern)
        resource.add_route("GET", _unreachable)
        by_resource[id(resource)] = chain
    return router, by_resource


async def _unreachable(request: web.Request) -> web.StreamResponse:
    raise web.HTTPInternalServerError()


async def render(
    routes: Sequence[RouteRecord],
    request: web.Request,
    style_collector: StyleCollector | None = None,
) -> RenderedPage:
    """Render the page for a request.

    Args:
        routes: Application route tree; loaders on the requested branch
            are expanded first
        request: Request to render
        style_collector: Optional collector producing the page's style block

    Returns:
        RenderedPage instance

    Raises:
        aiohttp.web.HTTPException: If no route matches or a component raises one
        RouteResponseError: If a component returns a response
    """
    expanded = await load_lazy_routes(routes, path=request.path)
    if expanded:
        router, by_resource = build_router(expanded)
        match_info = await router.resolve(request)
        if match_info.http_exception is not None:
            raise match_info.http_exception
        chain = by_resource[id(match_info.route.resource)]
        params = dict(match_info)
    else:
        # An application without routes renders an empty root page
        chain, params = (), {}

    ctx = PageContext(request=request, params=params, style_collector=style_collector)

    for route in reversed(chain):
        if route.component is None:
            continue
        result: Any = await invoke(route.component, ctx)
        if isinstance(result, web.StreamResponse):
            raise RouteResponseError(request.path, result.status, result.headers.get("Location"))
        ctx.outlet = "" if result is None else str(result)

    app_html = ctx.outlet
    modules = {route.entry for route in chain if route.entry} | ctx.modules
    logger.debug(f"Rendered {request.path} through {len(chain)} route(s)")

    return RenderedPage(
        app_html=app_html,
        html_attributes=format_attributes(ctx.head.html_attributes),
        body_attributes=format_attributes(ctx.head.body_attributes),
        meta_attributes=ctx.head.to_strings(),
        style_tag=style_collector.to_string(app_html) if style_collector is not None else "",
        modules=frozenset(modules) if modules else None,
    )
