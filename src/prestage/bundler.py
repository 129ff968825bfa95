"""Bundler integration.

The client build is delegated to an external bundler (Vite by default),
which emits the static assets, both manifests and the shell template. The
server build stages the application's Python entry module in the requested
format so it can be imported from a throwaway directory.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import py_compile
import shutil
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Protocol

from prestage.config import SERVER_FORMATS
from prestage.errors import FatalBuildError

logger = logging.getLogger(__name__)

ENTRY_MODULE_NAME = "_prestage_entry"

_OUTPUT_TAIL_LINES = 20


class Bundler(Protocol):
    """Builds the client and server bundles."""

    async def build_client(self, root: Path, out_dir: Path, mode: str) -> None: ...

    async def build_server(self, entry: Path, out_dir: Path, format: str, mode: str) -> Path: ...


@dataclass
class ServerEntry:
    """Loaded server entry module."""

    create_root: Callable[..., Any]
    included_routes: Callable[..., Any] | None
    module: ModuleType
    added_search_path: str | None = None


class ViteBundler:
    """Runs the Vite CLI for the client build."""

    def __init__(self, command: Sequence[str] = ("npx", "vite", "build")) -> None:
        """Initialize bundler.

        Args:
            command: Bundler command line; build flags are appended
        """
        self._command = list(command)

    async def build_client(self, root: Path, out_dir: Path, mode: str) -> None:
        """Build client assets with both manifests.

        Raises:
            FatalBuildError: If the bundler cannot be started or exits non-zero
        """
        args = [
            *self._command,
            "--manifest",
            "--ssrManifest",
            "--outDir",
            str(out_dir),
            "--mode",
            mode,
        ]
        logger.debug(f"Running {' '.join(args)} in {root}")
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=root,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise FatalBuildError(f"Failed to start bundler {args[0]!r}: {e}") from e

        output, _ = await process.communicate()
        if process.returncode != 0:
            tail = "\n".join(output.decode("utf-8", errors="replace").splitlines()[-_OUTPUT_TAIL_LINES:])
            raise FatalBuildError(f"Client build failed with exit code {process.returncode}:\n{tail}")

    async def build_server(self, entry: Path, out_dir: Path, format: str, mode: str) -> Path:
        """Stage the server entry module."""
        return await asyncio.to_thread(stage_server_entry, entry, out_dir, format)


def stage_server_entry(entry: Path, out_dir: Path, format: str) -> Path:
    """Copy or compile the server entry into the output directory.

    Args:
        entry: Server entry source file
        out_dir: Staging directory
        format: "source" copies the module, "bytecode" compiles it

    Returns:
        Path of the staged module

    Raises:
        FatalBuildError: If the entry is missing, the format is unknown or
            compilation fails
    """
    if not entry.is_file():
        raise FatalBuildError(f"Server entry not found: {entry}")
    if format not in SERVER_FORMATS:
        raise FatalBuildError(f"Unknown server format {format!r}, expected one of {SERVER_FORMATS}")

    out_dir.mkdir(parents=True, exist_ok=True)
    if format == "source":
        target = out_dir / entry.name
        shutil.copyfile(entry, target)
        return target

    target = out_dir / entry.with_suffix(".pyc").name
    try:
        py_compile.compile(str(entry), cfile=str(target), doraise=True)
    except py_compile.PyCompileError as e:
        raise FatalBuildError(f"Failed to compile server entry: {e.msg}") from e
    return target


def load_server_entry(path: Path, search_path: Path | None = None) -> ServerEntry:
    """Import a staged server entry.

    The loader is chosen from the file suffix, so source and bytecode
    modules load the same way. ``search_path`` (the entry's original
    directory) is put on ``sys.path`` so sibling modules resolve. The module
    is registered as ``ENTRY_MODULE_NAME``, replacing any previous entry;
    unload_server_entry() undoes both changes.

    Args:
        path: Staged module
        search_path: Directory for the entry's own imports

    Returns:
        ServerEntry instance

    Raises:
        FatalBuildError: If the module cannot be imported or has no create_root
    """
    spec = importlib.util.spec_from_file_location(ENTRY_MODULE_NAME, path)
    if spec is None or spec.loader is None:
        raise FatalBuildError(f"Cannot import server entry {path}")

    added_search_path = None
    if search_path is not None and str(search_path) not in sys.path:
        added_search_path = str(search_path)
        sys.path.insert(0, added_search_path)

    module = importlib.util.module_from_spec(spec)
    sys.modules[ENTRY_MODULE_NAME] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        _forget(module, added_search_path)
        raise FatalBuildError(f"Failed to import server entry {path}: {e}") from e

    create_root = getattr(module, "create_root", None)
    if create_root is None or not callable(create_root):
        _forget(module, added_search_path)
        raise FatalBuildError(f"Server entry {path} does not define create_root()")

    included_routes = getattr(module, "included_routes", None)
    return ServerEntry(
        create_root=create_root,
        included_routes=included_routes if callable(included_routes) else None,
        module=module,
        added_search_path=added_search_path,
    )


def unload_server_entry(entry: ServerEntry) -> None:
    """Remove a loaded entry from ``sys.modules`` and its directory from ``sys.path``."""
    _forget(entry.module, entry.added_search_path)


def _forget(module: ModuleType, added_search_path: str | None) -> None:
    if sys.modules.get(ENTRY_MODULE_NAME) is module:
        del sys.modules[ENTRY_MODULE_NAME]
    if added_search_path is not None and added_search_path in sys.path:
        sys.path.remove(added_search_path)
