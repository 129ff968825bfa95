"""Per-route render task.

Turns one static path into one HTML file: renders the application,
merges the result into the shell template, injects resource hints, runs
the user hooks and the optional critical CSS pass, then writes the file.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from bs4 import BeautifulSoup

from prestage import server
from prestage.config import RenderConfig
from prestage.core.critical import CriticalCss
from prestage.core.formatting import format_html
from prestage.core.html import render_html
from prestage.core.invoke import invoke
from prestage.core.manifest import BuildManifests, collect_modules
from prestage.core.preload import render_preload_links
from prestage.core.queue import WorkerPool
from prestage.core.types import AppContext
from prestage.errors import RenderError
from prestage.hooks import BuildHooks

logger = logging.getLogger(__name__)

_HEAD_OPEN_RE = re.compile(r"<head\b[^>]*>", re.IGNORECASE)


@dataclass(frozen=True)
class RenderedFile:
    """A page written to disk."""

    path: str
    output_path: Path
    size_bytes: int


def route_file_name(path: str, dir_style: str = "flat") -> str:
    """Map a route path to its output file, relative to the output directory.

    Examples:
        >>> route_file_name("/")
        'index.html'
        >>> route_file_name("/about")
        'about.html'
        >>> route_file_name("/about", "nested")
        'about/index.html'
    """
    relative = path.lstrip("/")
    if dir_style == "nested":
        return str(PurePosixPath(relative, "index.html"))
    if not relative or path.endswith("/"):
        return str(PurePosixPath(relative, "index.html"))
    return f"{relative}.html"


def format_size(size_bytes: int) -> str:
    """Format a byte count in KiB."""
    return f"{size_bytes / 1024:.2f} KiB"


class PageRenderer:
    """Renders pages of one build.

    Shared state (manifests, path-to-entry map, critical CSS processor) is
    read-only; every call to render() owns its own document.
    """

    def __init__(
        self,
        *,
        create_root: Callable[..., Any],
        manifests: BuildManifests,
        path_to_entry: Mapping[str, frozenset[str]],
        out_dir: Path,
        options: RenderConfig,
        hooks: BuildHooks | None = None,
        critical: CriticalCss | None = None,
        critical_pool: WorkerPool | None = None,
    ) -> None:
        """Initialize renderer.

        Args:
            create_root: Application factory from the server entry
            manifests: Client build manifests and shell template
            path_to_entry: Entry identifiers per static path
            out_dir: Directory receiving the pages
            options: Render options
            hooks: Lifecycle hooks
            critical: Critical CSS processor, None to skip the pass
            critical_pool: Serial pool the critical CSS pass runs in
        """
        self._create_root = create_root
        self._manifests = manifests
        self._path_to_entry = path_to_entry
        self._out_dir = out_dir
        self._options = options
        self._hooks = hooks or BuildHooks()
        self._critical = critical
        self._critical_pool = critical_pool or WorkerPool(1)

    async def render(self, path: str) -> RenderedFile:
        """Render one path and write it.

        Args:
            path: Static route path

        Returns:
            RenderedFile describing the written page

        Raises:
            RenderError: If any step fails
        """
        try:
            return await self._render(path)
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(path, e) from e

    async def _render(self, path: str) -> RenderedFile:
        ctx: AppContext = await invoke(self._create_root, False, path)

        style_collector = None
        if ctx.get_style_collector is not None:
            style_collector = await invoke(ctx.get_style_collector)

        index_html = self._manifests.index_html
        replaced = await invoke(self._hooks.on_before_page_render, path, index_html, ctx)
        if replaced:
            index_html = replaced

        page = await server.render(ctx.routes or (), server.create_request(path), style_collector)

        if ctx.on_app_rendered is not None:
            await invoke(ctx.on_app_rendered, path, page.app_html, ctx)

        merged = render_html(
            index_html=index_html,
            app_html=page.app_html,
            root_container_id=self._options.root_container_id,
            html_attributes=page.html_attributes,
            body_attributes=page.body_attributes,
            meta_attributes=page.meta_attributes,
        )
        document = BeautifulSoup(merged, "html.parser")

        entries = self._path_to_entry.get(path, frozenset())
        render_preload_links(
            document,
            collect_modules(self._manifests.manifest, entries),
            self._manifests,
            own_entries=entries,
            used_modules=page.modules,
        )

        html = str(document)
        transformed = await invoke(self._hooks.on_page_rendered, path, html, ctx)
        if transformed:
            html = transformed

        if self._critical is not None:
            process = functools.partial(asyncio.to_thread, self._critical.process, html)
            html = await self._critical_pool.run(process)

        if page.style_tag:
            html = _HEAD_OPEN_RE.sub(lambda m: f"{m.group(0)}{page.style_tag}", html, count=1)

        html = format_html(html, self._options.formatting)

        file_name = route_file_name(path, self._options.dir_style)
        output_path = self._out_dir / file_name
        size_bytes = await asyncio.to_thread(_write_page, output_path, html)
        logger.info(f"{file_name}  {format_size(size_bytes)}")

        return RenderedFile(path=path, output_path=output_path, size_bytes=size_bytes)


def _write_page(output_path: Path, html: str) -> int:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    data = html.encode("utf-8")
    output_path.write_bytes(data)
    return len(data)
