"""Configuration management for Prestage.

Supports TOML configuration format with auto-discovery.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path

CONFIG_FILENAME = "prestage.toml"

SCRIPT_MODES = ("sync", "defer", "async")
FORMATTING_MODES = ("none", "minify", "prettify")
DIR_STYLES = ("flat", "nested")
SERVER_FORMATS = ("source", "bytecode")
PRELOAD_STRATEGIES = ("media", "swap", "none")


@dataclass
class BuildConfig:
    """Build pipeline configuration."""

    root: Path = field(default_factory=Path.cwd)
    out_dir: Path = field(default_factory=lambda: Path.cwd() / "dist")
    mode: str = "production"
    entry: Path | None = None
    format: str = "source"
    mock: bool = False
    concurrency: int = 20
    watchdog_seconds: float = 15.0
    bundler_command: list[str] = field(default_factory=lambda: ["npx", "vite", "build"])


@dataclass
class RenderConfig:
    """Page rendering configuration."""

    script: str = "sync"
    formatting: str = "none"
    dir_style: str = "flat"
    include_all_routes: bool = False
    root_container_id: str = "root"


@dataclass
class CriticalCssConfig:
    """Critical CSS extraction configuration."""

    enabled: bool = True
    preload: str = "media"
    compress: bool = True
    inline_fonts: bool = False
    inline_threshold: int = 0
    additional_stylesheets: list[str] = field(default_factory=list)


@dataclass
class Config:
    """Application configuration."""

    build: BuildConfig
    render: RenderConfig
    critical_css: CriticalCssConfig
    config_path: Path | None = None

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from file.

        If config_path is provided, loads from that file.
        Otherwise, searches for prestage.toml in current directory and parents.

        Args:
            config_path: Optional explicit path to config file

        Returns:
            Config instance with defaults for missing sections

        Raises:
            FileNotFoundError: If explicit config_path doesn't exist
            ValueError: If configuration is invalid
        """
        if config_path is not None:
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return cls._load_from_file(config_path)

        discovered_path = cls._discover_config()
        if discovered_path is None:
            return cls._default()

        return cls._load_from_file(discovered_path)

    @classmethod
    def _discover_config(cls) -> Path | None:
        """Search for config file in current directory and parents."""
        current = Path.cwd()
        while True:
            candidate = current / CONFIG_FILENAME
            if candidate.exists():
                return candidate
            parent = current.parent
            if parent == current:
                return None
            current = parent

    @classmethod
    def _default(cls) -> Config:
        """Create config with all defaults."""
        return cls(
            build=BuildConfig(),
            render=RenderConfig(),
            critical_css=CriticalCssConfig(),
        )

    @classmethod
    def _load_from_file(cls, path: Path) -> Config:
        """Load configuration from a specific file.

        Args:
            path: Path to TOML configuration file

        Returns:
            Config instance

        Raises:
            ValueError: If configuration is invalid
        """
        with path.open("rb") as f:
            data = tomllib.load(f)

        if not isinstance(data, dict):
            raise ValueError("Configuration must be a dictionary")

        return cls(
            build=cls._parse_build(data.get("build"), path.parent),
            render=cls._parse_render(data.get("render")),
            critical_css=cls._parse_critical_css(data.get("critical_css")),
            config_path=path,
        )

    @classmethod
    def _parse_build(cls, data: object, config_dir: Path) -> BuildConfig:
        """Parse build configuration section.

        Paths are resolved against the directory containing the config
        file; ``out_dir`` and ``entry`` are relative to ``root``.

        Args:
            data: Raw build section data
            config_dir: Directory containing config file

        Returns:
            BuildConfig instance
        """
        if data is None:
            return BuildConfig(root=config_dir, out_dir=config_dir / "dist")

        if not isinstance(data, dict):
            raise ValueError("build section must be a dictionary")

        root = data.get("root", ".")
        if not isinstance(root, str):
            raise ValueError("build.root must be a string")
        root_path = config_dir / root

        out_dir = data.get("out_dir", "dist")
        if not isinstance(out_dir, str):
            raise ValueError("build.out_dir must be a string")

        mode = data.get("mode", "production")
        if not isinstance(mode, str):
            raise ValueError("build.mode must be a string")

        entry = data.get("entry")
        if entry is not None and not isinstance(entry, str):
            raise ValueError("build.entry must be a string")

        mock = data.get("mock", False)
        if not isinstance(mock, bool):
            raise ValueError("build.mock must be a boolean")

        concurrency = data.get("concurrency", 20)
        if not isinstance(concurrency, int) or isinstance(concurrency, bool) or concurrency < 1:
            raise ValueError("build.concurrency must be a positive integer")

        watchdog_seconds = data.get("watchdog_seconds", 15)
        if not isinstance(watchdog_seconds, int | float) or isinstance(watchdog_seconds, bool):
            raise ValueError("build.watchdog_seconds must be a number")

        bundler_command = data.get("bundler_command", ["npx", "vite", "build"])
        if not isinstance(bundler_command, list) or not bundler_command:
            raise ValueError("build.bundler_command must be a non-empty list")
        for item in bundler_command:
            if not isinstance(item, str):
                raise ValueError("build.bundler_command items must be strings")

        return BuildConfig(
            root=root_path,
            out_dir=root_path / out_dir,
            mode=mode,
            entry=root_path / entry if entry is not None else None,
            format=_choice(data, "format", "source", SERVER_FORMATS, "build"),
            mock=mock,
            concurrency=concurrency,
            watchdog_seconds=float(watchdog_seconds),
            bundler_command=bundler_command,
        )

    @classmethod
    def _parse_render(cls, data: object) -> RenderConfig:
        """Parse render configuration section.

        Args:
            data: Raw render section data

        Returns:
            RenderConfig instance
        """
        if data is None:
            return RenderConfig()

        if not isinstance(data, dict):
            raise ValueError("render section must be a dictionary")

        include_all_routes = data.get("include_all_routes", False)
        if not isinstance(include_all_routes, bool):
            raise ValueError("render.include_all_routes must be a boolean")

        root_container_id = data.get("root_container_id", "root")
        if not isinstance(root_container_id, str) or not root_container_id:
            raise ValueError("render.root_container_id must be a non-empty string")

        return RenderConfig(
            script=_choice(data, "script", "sync", SCRIPT_MODES, "render"),
            formatting=_choice(data, "formatting", "none", FORMATTING_MODES, "render"),
            dir_style=_choice(data, "dir_style", "flat", DIR_STYLES, "render"),
            include_all_routes=include_all_routes,
            root_container_id=root_container_id,
        )

    @classmethod
    def _parse_critical_css(cls, data: object) -> CriticalCssConfig:
        """Parse critical_css configuration section.

        Args:
            data: Raw critical_css section data

        Returns:
            CriticalCssConfig instance
        """
        if data is None:
            return CriticalCssConfig()

        if not isinstance(data, dict):
            raise ValueError("critical_css section must be a dictionary")

        flags: dict[str, bool] = {}
        for key, default in (("enabled", True), ("compress", True), ("inline_fonts", False)):
            value = data.get(key, default)
            if not isinstance(value, bool):
                raise ValueError(f"critical_css.{key} must be a boolean")
            flags[key] = value

        inline_threshold = data.get("inline_threshold", 0)
        if not isinstance(inline_threshold, int) or isinstance(inline_threshold, bool):
            raise ValueError("critical_css.inline_threshold must be an integer")

        additional_raw = data.get("additional_stylesheets", [])
        if not isinstance(additional_raw, list):
            raise ValueError("critical_css.additional_stylesheets must be a list")
        additional_stylesheets: list[str] = []
        for item in additional_raw:
            if not isinstance(item, str):
                raise ValueError("critical_css.additional_stylesheets items must be strings")
            additional_stylesheets.append(item)

        return CriticalCssConfig(
            enabled=flags["enabled"],
            preload=_choice(data, "preload", "media", PRELOAD_STRATEGIES, "critical_css"),
            compress=flags["compress"],
            inline_fonts=flags["inline_fonts"],
            inline_threshold=inline_threshold,
            additional_stylesheets=additional_stylesheets,
        )

    def with_overrides(
        self,
        *,
        root: Path | None = None,
        out_dir: Path | None = None,
        entry: Path | None = None,
        server_format: str | None = None,
        mock: bool | None = None,
        concurrency: int | None = None,
        script: str | None = None,
        formatting: str | None = None,
        dir_style: str | None = None,
        include_all_routes: bool | None = None,
        critical_css_enabled: bool | None = None,
    ) -> Config:
        """Create a new Config with CLI overrides applied.

        Only non-None values override the existing config. The original
        Config is not modified.

        Returns:
            New Config instance with overrides applied
        """
        build = self.build
        build_changes = {
            key: value
            for key, value in (
                ("root", root),
                ("out_dir", out_dir),
                ("entry", entry),
                ("format", server_format),
                ("mock", mock),
                ("concurrency", concurrency),
            )
            if value is not None
        }
        if build_changes:
            build = replace(self.build, **build_changes)

        render = self.render
        render_changes = {
            key: value
            for key, value in (
                ("script", script),
                ("formatting", formatting),
                ("dir_style", dir_style),
                ("include_all_routes", include_all_routes),
            )
            if value is not None
        }
        if render_changes:
            render = replace(self.render, **render_changes)

        critical_css = self.critical_css
        if critical_css_enabled is not None:
            critical_css = replace(self.critical_css, enabled=critical_css_enabled)

        return replace(self, build=build, render=render, critical_css=critical_css)


def _choice(data: dict, key: str, default: str, choices: tuple[str, ...], section: str) -> str:
    value = data.get(key, default)
    if value not in choices:
        raise ValueError(f"{section}.{key} must be one of: {', '.join(choices)}")
    return value
