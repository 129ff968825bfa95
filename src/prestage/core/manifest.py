"""Bundler manifests and dependency graph resolution.

The client build writes two manifests next to the shell ``index.html``:

    dist/
    ├── index.html            # Shell template
    ├── manifest.json         # entry -> {file, css, assets, dynamicImports}
    └── ssr-manifest.json     # module id -> emitted chunk URLs

Vite 5 writes both manifests into ``dist/.vite/``; both locations are
checked. They are loaded once per build and shared read-only by every
render task.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType

from prestage.errors import ManifestError

MANIFEST_FILENAME = "manifest.json"
SSR_MANIFEST_FILENAME = "ssr-manifest.json"
INDEX_FILENAME = "index.html"


@dataclass(frozen=True)
class ManifestItem:
    """Module manifest record for one entry."""

    file: str
    src: str | None = None
    css: tuple[str, ...] = ()
    assets: tuple[str, ...] = ()
    dynamic_imports: tuple[str, ...] = ()
    imports: tuple[str, ...] = ()
    is_entry: bool = False

    @classmethod
    def from_dict(cls, data: object) -> ManifestItem:
        """Parse a manifest record.

        Args:
            data: Raw JSON value of one manifest entry

        Returns:
            ManifestItem instance

        Raises:
            ValueError: If the record is malformed
        """
        if not isinstance(data, dict):
            raise ValueError("manifest entry must be an object")

        file = data.get("file")
        if not isinstance(file, str):
            raise ValueError("manifest entry 'file' must be a string")

        src = data.get("src")
        if src is not None and not isinstance(src, str):
            raise ValueError("manifest entry 'src' must be a string")

        return cls(
            file=file,
            src=src,
            css=_string_tuple(data, "css"),
            assets=_string_tuple(data, "assets"),
            dynamic_imports=_string_tuple(data, "dynamicImports"),
            imports=_string_tuple(data, "imports"),
            is_entry=bool(data.get("isEntry", False)),
        )


def _string_tuple(data: dict, key: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"manifest entry '{key}' must be a list of strings")
    return tuple(value)


Manifest = Mapping[str, ManifestItem]
SSRManifest = Mapping[str, tuple[str, ...]]


@dataclass(frozen=True)
class BuildManifests:
    """Client build outputs shared by all render tasks."""

    manifest: Manifest
    ssr_manifest: SSRManifest
    index_html: str


def parse_manifest(data: object) -> Manifest:
    """Parse a decoded ``manifest.json``.

    Raises:
        ValueError: If the manifest is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("manifest must be an object")
    return MappingProxyType({key: ManifestItem.from_dict(value) for key, value in data.items()})


def parse_ssr_manifest(data: object) -> SSRManifest:
    """Parse a decoded ``ssr-manifest.json``.

    Raises:
        ValueError: If the manifest is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("ssr manifest must be an object")

    result: dict[str, tuple[str, ...]] = {}
    for key, value in data.items():
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise ValueError(f"ssr manifest entry {key!r} must be a list of strings")
        result[key] = tuple(value)
    return MappingProxyType(result)


def load_manifests(out_dir: Path) -> BuildManifests:
    """Load the manifests and the shell template from the client build output.

    Args:
        out_dir: Client build output directory

    Returns:
        BuildManifests instance

    Raises:
        ManifestError: If a file is missing or malformed
    """
    manifest_path = _find_output_file(out_dir, MANIFEST_FILENAME)
    ssr_manifest_path = _find_output_file(out_dir, SSR_MANIFEST_FILENAME)
    index_path = out_dir / INDEX_FILENAME
    if not index_path.exists():
        raise ManifestError(f"Shell template not found: {index_path}")

    try:
        manifest = parse_manifest(_read_json(manifest_path))
        ssr_manifest = parse_ssr_manifest(_read_json(ssr_manifest_path))
    except ValueError as e:
        raise ManifestError(str(e)) from e

    return BuildManifests(
        manifest=manifest,
        ssr_manifest=ssr_manifest,
        index_html=index_path.read_text(encoding="utf-8"),
    )


def _find_output_file(out_dir: Path, name: str) -> Path:
    for candidate in (out_dir / name, out_dir / ".vite" / name):
        if candidate.exists():
            return candidate
    raise ManifestError(f"{name} not found in {out_dir}. Did the client build emit it?")


def _read_json(path: Path) -> object:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"{path.name} is not valid JSON: {e}") from e


def collect_modules(manifest: Manifest, entries: Iterable[str] | None) -> set[str]:
    """Collect every module reachable from the given entries.

    Walks ``dynamic_imports`` edges depth-first. A module already collected
    is not walked again, so import cycles terminate. Entries missing from
    the manifest are collected but have no edges.

    Args:
        manifest: Module manifest
        entries: Entry identifiers to start from

    Returns:
        Set of module identifiers, entries included
    """
    modules: set[str] = set()
    if not entries:
        return modules

    for entry in entries:
        stack = [entry]
        while stack:
            module_id = stack.pop()
            if module_id in modules:
                continue
            modules.add(module_id)
            item = manifest.get(module_id)
            if item is not None:
                stack.extend(reversed(item.dynamic_imports))

    return modules
