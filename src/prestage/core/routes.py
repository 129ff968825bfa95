"""Route tree expansion and static path enumeration.

The application's route tree is immutable. Routes whose children are only
known at runtime carry a loader; expanding the tree runs the loaders once
and returns a new tree with the loaded children attached.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from prestage.core.invoke import invoke
from prestage.errors import DiscoveryError

logger = logging.getLogger(__name__)

RouteLoader = Callable[[], "Sequence[RouteRecord] | RouteRecord | Awaitable[Any]"]
StaticPathsFactory = Callable[[], "Sequence[str] | Awaitable[Sequence[str]]"]
IncludedRoutes = Callable[[list[str], "Sequence[RouteRecord]"], "list[str] | Awaitable[list[str]]"]


@dataclass(frozen=True)
class RouteRecord:
    """Node of the application's route tree.

    Attributes:
        path: Segment pattern relative to the parent ("about", ":id", "*").
            Absolute patterns ("/docs") restart at the root. None for
            pathless layout routes.
        children: Child routes
        loader: Callable returning additional child routes, executed once
            during discovery
        index: Whether the route renders at its parent's path
        entry: Entry identifier of the code-split chunk serving the route
        component: Callable receiving a PageContext and returning markup
        get_static_paths: Callable listing concrete paths for a
            parameterized route
    """

    path: str | None = None
    children: tuple[RouteRecord, ...] = ()
    loader: RouteLoader | None = None
    index: bool = False
    entry: str | None = None
    component: Callable[..., Any] | None = None
    get_static_paths: StaticPathsFactory | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.children, tuple):
            object.__setattr__(self, "children", tuple(self.children))


@dataclass
class RoutePaths:
    """Paths discovered in a route tree."""

    paths: list[str]
    path_to_entry: dict[str, frozenset[str]] = field(default_factory=dict)
    lazy_paths: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Visit:
    full_path: str
    chain: tuple[RouteRecord, ...]
    is_page: bool


def is_dynamic_path(path: str) -> bool:
    """Whether a path contains a parameter placeholder or a wildcard."""
    return ":" in path or "*" in path


def filter_dynamic_routes(paths: Sequence[str]) -> list[str]:
    """Drop paths that cannot be rendered without parameter values."""
    return [path for path in paths if not is_dynamic_path(path)]


def join_route_path(prefix: str, path: str) -> str:
    """Join a parent path and a child segment pattern.

    Args:
        prefix: Full path of the parent ("" or "/" for the root)
        path: Child segment pattern

    Returns:
        Full path with a leading slash
    """
    if path.startswith("/"):
        return path
    base = prefix.rstrip("/")
    if not path:
        return base or "/"
    return f"{base}/{path}"


def iter_route_chains(
    routes: Sequence[RouteRecord],
) -> Iterator[tuple[str, tuple[RouteRecord, ...]]]:
    """Yield (full path pattern, route chain) for every renderable route.

    The chain runs from the outermost matched route to the route itself.
    Index routes yield their parent's path.
    """
    for visit in _walk(routes, "", ()):
        if visit.is_page:
            yield visit.full_path, visit.chain


def _walk(
    routes: Sequence[RouteRecord],
    prefix: str,
    chain: tuple[RouteRecord, ...],
) -> Iterator[_Visit]:
    for route in routes:
        route_chain = (*chain, route)
        full_path = prefix or "/"
        if route.path is not None:
            full_path = join_route_path(prefix, route.path)
        yield _Visit(
            full_path=full_path,
            chain=route_chain,
            is_page=route.path is not None or route.index,
        )
        if route.children:
            yield from _walk(route.children, full_path, route_chain)


async def routes_to_paths(routes: Sequence[RouteRecord] | None) -> RoutePaths:
    """Enumerate the paths of a route tree.

    Args:
        routes: Route tree (possibly not yet expanded)

    Returns:
        RoutePaths with every path pattern (dynamic ones included), the
        entries of the route chain serving each path, and the paths of
        routes whose loader has not run yet

    Raises:
        DiscoveryError: If a static paths factory fails
    """
    if not routes:
        return RoutePaths(paths=["/"])

    paths: dict[str, None] = {}
    path_to_entry: dict[str, frozenset[str]] = {}
    lazy_paths: dict[str, None] = {}

    def add(path: str, entries: frozenset[str]) -> None:
        paths[path] = None
        path_to_entry[path] = path_to_entry.get(path, frozenset()) | entries

    for visit in _walk(routes, "", ()):
        route = visit.chain[-1]
        entries = frozenset(r.entry for r in visit.chain if r.entry)
        if visit.is_page:
            add(visit.full_path, entries)
        if route.loader is not None:
            lazy_paths[visit.full_path] = None
        if route.get_static_paths is not None and is_dynamic_path(visit.full_path):
            try:
                static_paths = await invoke(route.get_static_paths)
            except Exception as e:
                raise DiscoveryError(visit.full_path, e) from e
            for static_path in static_paths:
                add(join_route_path("", static_path), entries)

    return RoutePaths(
        paths=list(paths),
        path_to_entry=path_to_entry,
        lazy_paths=list(lazy_paths),
    )


def lazy_route_paths(routes: Sequence[RouteRecord]) -> list[str]:
    """Paths of routes whose loader has not run yet.

    Unlike routes_to_paths(), no static paths factory is called.
    """
    return list(
        dict.fromkeys(visit.full_path for visit in _walk(routes, "", ()) if visit.chain[-1].loader is not None)
    )


def matches_path_prefix(pattern: str, path: str) -> bool:
    """Whether a route path pattern can match ``path`` or one of its ancestors.

    ``:name`` matches any single segment and ``*`` matches the rest.

    >>> matches_path_prefix("/posts/:id", "/posts/1/comments")
    True
    >>> matches_path_prefix("/blog", "/about")
    False
    """
    path_segments = [segment for segment in path.split("/") if segment]
    for i, segment in enumerate(segment for segment in pattern.split("/") if segment):
        if segment == "*":
            return True
        if i >= len(path_segments):
            return False
        if not segment.startswith(":") and segment != path_segments[i]:
            return False
    return True


async def load_lazy_routes(
    routes: Sequence[RouteRecord],
    prefix: str = "",
    *,
    path: str | None = None,
) -> tuple[RouteRecord, ...]:
    """Run route loaders once and attach the loaded children.

    Loaded children are expanded as well. Expanded routes carry no
    loaders, so expanding the result again runs nothing.

    Args:
        routes: Route tree to expand
        prefix: Full path of the parent route
        path: Only run loaders of routes on the branch matching this
            path; other loaders are left in place

    Returns:
        New route tree

    Raises:
        DiscoveryError: If a loader fails
    """
    expanded: list[RouteRecord] = []
    for route in routes:
        full_path = prefix or "/"
        if route.path is not None:
            full_path = join_route_path(prefix, route.path)

        children = route.children
        loader = route.loader
        if loader is not None and (path is None or matches_path_prefix(full_path, path)):
            logger.debug(f"Loading routes for {full_path}")
            try:
                loaded = await invoke(loader)
            except Exception as e:
                raise DiscoveryError(full_path, e) from e
            children = (*children, *_as_routes(loaded))
            loader = None

        if children:
            children = await load_lazy_routes(children, full_path, path=path)

        expanded.append(replace(route, children=children, loader=loader))

    return tuple(expanded)


def _as_routes(loaded: object) -> tuple[RouteRecord, ...]:
    if loaded is None:
        return ()
    if isinstance(loaded, RouteRecord):
        return (loaded,)
    return tuple(loaded)  # type: ignore[arg-type]


async def resolve_static_paths(
    paths: Sequence[str],
    routes: Sequence[RouteRecord],
    *,
    include_all_routes: bool = False,
    included_routes: IncludedRoutes | None = None,
) -> list[str]:
    """Select the paths to render.

    The ``included_routes`` filter runs first unless ``include_all_routes``
    is set. Dynamic patterns are excluded afterwards in both cases, so a
    filter can never reintroduce one. Duplicates are removed keeping the
    first occurrence.

    Args:
        paths: Paths from routes_to_paths() on the expanded tree
        routes: Route tree handed to the filter
        include_all_routes: Skip the filter and use the raw list
        included_routes: Optional filter (sync or async)

    Returns:
        De-duplicated list of static paths

    Raises:
        DiscoveryError: If the filter fails
    """
    if include_all_routes or included_routes is None:
        selected = list(paths)
    else:
        try:
            selected = list(await invoke(included_routes, list(paths), routes))
        except Exception as e:
            raise DiscoveryError("/", e) from e

    return list(dict.fromkeys(filter_dynamic_routes(selected)))
