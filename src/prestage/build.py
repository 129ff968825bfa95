"""Static pre-render build orchestration.

Runs the client build, stages and imports the server entry, discovers the
static paths of the application, renders every path through the render
queue and cleans up the staging directory.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Protocol

from prestage.bundler import Bundler, ServerEntry, ViteBundler, load_server_entry, unload_server_entry
from prestage.config import Config
from prestage.core.critical import create_critical_css
from prestage.core.html import detect_entry, rewrite_scripts
from prestage.core.invoke import invoke
from prestage.core.manifest import load_manifests
from prestage.core.queue import RenderQueue
from prestage.core.render import PageRenderer, RenderedFile
from prestage.core.routes import lazy_route_paths, load_lazy_routes, resolve_static_paths, routes_to_paths
from prestage.errors import BuildFailedError, DiscoveryError, RenderError
from prestage.hooks import BuildHooks
from prestage.mock import install_dom_globals

logger = logging.getLogger(__name__)

TEMP_DIR_NAME = ".prestage-temp"
SSG_ENV_VAR = "PRESTAGE_SSG"


class ServiceWorkerGenerator(Protocol):
    """Regenerates a service worker once pages are written."""

    disabled: bool

    def generate_sw(self) -> object: ...


@dataclass
class BuildResult:
    """Summary of a finished build."""

    files: list[RenderedFile]
    out_dir: Path
    duration_ms: float
    paths: list[str] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return len(self.files)


def resolve_mode(configured: str, environ: Mapping[str, str] | None = None) -> str:
    """Return the build mode, letting ``MODE`` or ``NODE_ENV`` override it."""
    env = os.environ if environ is None else environ
    return env.get("MODE") or env.get("NODE_ENV") or configured


async def discover_paths(
    server_entry: ServerEntry,
    hooks: BuildHooks,
    *,
    include_all_routes: bool = False,
) -> tuple[list[str], dict[str, frozenset[str]]]:
    """Enumerate the static paths of the application.

    Args:
        server_entry: Loaded server entry
        hooks: Lifecycle hooks providing the fallback route filter
        include_all_routes: Skip the route filter

    Returns:
        Static paths to render and the entry identifiers per path

    Raises:
        DiscoveryError: If application code fails while paths are enumerated
    """
    try:
        app = await invoke(server_entry.create_root, False)
    except Exception as e:
        raise DiscoveryError("/", e) from e
    routes = tuple(app.routes or ())

    lazy_paths = lazy_route_paths(routes)
    if lazy_paths:
        logger.debug(f"Loading lazy routes under {', '.join(lazy_paths)}")

    expanded = await load_lazy_routes(routes)
    discovered = await routes_to_paths(expanded)

    paths = await resolve_static_paths(
        discovered.paths,
        routes,
        include_all_routes=include_all_routes,
        included_routes=server_entry.included_routes or hooks.included_routes,
    )
    return paths, discovered.path_to_entry


def arm_watchdog(seconds: float) -> threading.Timer | None:
    """Force-exit the process if it is still alive after ``seconds``.

    The timer thread is a daemon, so a process that finishes normally is
    not held open by it.

    Returns:
        The started timer, or None when ``seconds`` is not positive
    """
    if seconds <= 0:
        return None

    def _force_exit() -> None:
        logger.warning(
            f"Build process still running after {seconds:g}s. "
            "There might be something misconfigured in your setup. Force exit."
        )
        logging.shutdown()
        os._exit(0)

    timer = threading.Timer(seconds, _force_exit)
    timer.daemon = True
    timer.start()
    return timer


async def build(
    config: Config,
    hooks: BuildHooks | None = None,
    *,
    bundler: Bundler | None = None,
    service_worker: ServiceWorkerGenerator | None = None,
) -> BuildResult:
    """Pre-render every static route of an application.

    Every path is attempted even when some fail. Failures are raised
    together once the staging directory has been removed.

    Args:
        config: Build configuration
        hooks: Lifecycle hooks
        bundler: Bundler, defaults to ViteBundler with the configured command
        service_worker: Optional service worker generator run after rendering

    Returns:
        BuildResult with the written pages

    Raises:
        DiscoveryError: If application code fails during route discovery
        ManifestError: If the client build outputs are missing or invalid
        FatalBuildError: If a bundler step fails
        BuildFailedError: If one or more pages failed to render
    """
    started = time.perf_counter()
    hooks = hooks or BuildHooks()
    bundler = bundler or ViteBundler(config.build.bundler_command)

    root = config.build.root
    out_dir = config.build.out_dir
    mode = resolve_mode(config.build.mode)
    temp_root = root / TEMP_DIR_NAME

    if temp_root.exists():
        shutil.rmtree(temp_root)

    uninstall_mock = None
    server_entry: ServerEntry | None = None
    try:
        logger.info("Build for client...")
        await bundler.build_client(root, out_dir, mode)

        if config.build.mock:
            uninstall_mock = install_dom_globals()

        logger.info("Build for server...")
        os.environ[SSG_ENV_VAR] = "true"
        entry = config.build.entry or detect_entry(root)
        staged = await bundler.build_server(entry, temp_root / secrets.token_hex(5), config.build.format, mode)
        server_entry = load_server_entry(staged, search_path=entry.parent)

        paths, path_to_entry = await discover_paths(
            server_entry,
            hooks,
            include_all_routes=config.render.include_all_routes,
        )

        manifests = load_manifests(out_dir)
        manifests = replace(manifests, index_html=rewrite_scripts(manifests.index_html, config.render.script))

        critical = create_critical_css(out_dir, config.critical_css)
        if critical is not None:
            logger.info("Critical CSS generation enabled")

        logger.info(f"Rendering {len(paths)} page(s)...")
        queue = RenderQueue(config.build.concurrency)
        renderer = PageRenderer(
            create_root=server_entry.create_root,
            manifests=manifests,
            path_to_entry=path_to_entry,
            out_dir=out_dir,
            options=config.render,
            hooks=hooks,
            critical=critical,
            critical_pool=queue.critical,
        )
        outcome = await queue.render_all(paths, renderer.render)
    finally:
        if server_entry is not None:
            unload_server_entry(server_entry)
        if temp_root.exists():
            shutil.rmtree(temp_root)
        if uninstall_mock is not None:
            uninstall_mock()
        arm_watchdog(config.build.watchdog_seconds)

    if outcome.failed:
        errors = [
            error if isinstance(error, RenderError) else RenderError(path, error)
            for path, error in outcome.failed.items()
        ]
        for error in errors:
            logger.error(str(error))
        raise BuildFailedError(errors)

    if service_worker is not None and not service_worker.disabled:
        logger.info("Regenerate service worker...")
        await invoke(service_worker.generate_sw)

    logger.info("Build finished.")
    await invoke(hooks.on_finished)

    return BuildResult(
        files=outcome.completed,
        out_dir=out_dir,
        duration_ms=(time.perf_counter() - started) * 1000,
        paths=paths,
    )
