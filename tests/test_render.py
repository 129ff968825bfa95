"""Tests for the per-route render task."""

from pathlib import Path

import pytest
from prestage.config import CriticalCssConfig, RenderConfig
from prestage.core.critical import CriticalCss
from prestage.core.manifest import BuildManifests, parse_manifest, parse_ssr_manifest
from prestage.core.queue import WorkerPool
from prestage.core.render import PageRenderer, format_size, route_file_name
from prestage.core.routes import RouteRecord
from prestage.core.types import AppContext
from prestage.errors import RenderError
from prestage.hooks import BuildHooks

SHELL = (
    '<!DOCTYPE html><html><head><title>Shell</title></head><body><div id="root"></div>'
    '<script type="module" src="/assets/app.js"></script></body></html>'
)


def page(ctx) -> str:
    return "<p class='intro'>Hello</p>"


def broken(ctx) -> str:
    raise KeyError("missing data")


ROUTES = (
    RouteRecord(path="/", entry="app", component=page),
    RouteRecord(path="/broken", component=broken),
)


class Collector:
    def to_string(self, app_html: str) -> str:
        return "<style>.intro{color:red}</style>"


def _manifests(index_html: str = SHELL) -> BuildManifests:
    return BuildManifests(
        manifest=parse_manifest({"app": {"file": "assets/app.js", "dynamicImports": ["lazy"]}, "lazy": {"file": "assets/lazy.js"}}),
        ssr_manifest=parse_ssr_manifest({}),
        index_html=index_html,
    )


def _renderer(out_dir: Path, index_html: str = SHELL, **kwargs) -> PageRenderer:
    kwargs.setdefault("create_root", lambda is_client, path=None: AppContext(routes=ROUTES, path=path))
    kwargs.setdefault("options", RenderConfig())
    return PageRenderer(
        manifests=_manifests(index_html),
        path_to_entry={"/": frozenset({"app"}), "/broken": frozenset()},
        out_dir=out_dir,
        **kwargs,
    )


class TestRouteFileName:
    """Tests for route_file_name()."""

    def test__flat__paths(self) -> None:
        """Map paths to flat file names."""
        assert route_file_name("/") == "index.html"
        assert route_file_name("/about") == "about.html"
        assert route_file_name("/docs/intro") == "docs/intro.html"
        assert route_file_name("/docs/") == "docs/index.html"

    def test__nested__paths(self) -> None:
        """Map paths to directory index files."""
        assert route_file_name("/", "nested") == "index.html"
        assert route_file_name("/about", "nested") == "about/index.html"


class TestFormatSize:
    """Tests for format_size()."""

    def test__kib__two_decimals(self) -> None:
        """Report sizes in KiB."""
        assert format_size(1536) == "1.50 KiB"


class TestPageRenderer:
    """Tests for PageRenderer.render()."""

    @pytest.mark.asyncio
    async def test__root_page__written_with_hints(self, tmp_path: Path) -> None:
        """Write the page with the rendered body and a prefetch hint."""
        result = await _renderer(tmp_path).render("/")

        html = (tmp_path / "index.html").read_text()
        assert result.output_path == tmp_path / "index.html"
        assert result.size_bytes == len(html.encode())
        assert 'data-server-rendered="true"' in html
        assert "<p class=\"intro\">Hello</p>" in html
        assert '<link rel="prefetch" href="/assets/lazy.js"/>' in html
        assert 'href="/assets/app.js"' not in html

    @pytest.mark.asyncio
    async def test__app_without_routes__empty_root_page(self, tmp_path: Path) -> None:
        """Render an empty container when the application has no routes."""
        renderer = _renderer(tmp_path, create_root=lambda is_client, path=None: AppContext(routes=None, path=path))

        result = await renderer.render("/")

        html = result.output_path.read_text()
        assert '<div id="root" data-server-rendered="true"></div>' in html

    @pytest.mark.asyncio
    async def test__failure__wrapped_in_render_error(self, tmp_path: Path) -> None:
        """Wrap failures with the page path and cause."""
        with pytest.raises(RenderError) as exc_info:
            await _renderer(tmp_path).render("/broken")

        assert exc_info.value.path == "/broken"
        assert "/broken" in str(exc_info.value)
        assert "missing data" in str(exc_info.value)
        assert isinstance(exc_info.value.cause, KeyError)
        assert not (tmp_path / "broken.html").exists()

    @pytest.mark.asyncio
    async def test__hooks__replace_template_and_output(self, tmp_path: Path) -> None:
        """Apply the template and page hooks."""
        calls = []

        class Hooks(BuildHooks):
            def on_before_page_render(self, path, index_html, ctx):
                calls.append(("before", path))
                return index_html.replace("<title>Shell</title>", "<title>Hooked</title>")

            async def on_page_rendered(self, path, html, ctx):
                calls.append(("after", path))
                return html.replace("Hello", "Bonjour")

        await _renderer(tmp_path, hooks=Hooks()).render("/")

        html = (tmp_path / "index.html").read_text()
        assert calls == [("before", "/"), ("after", "/")]
        assert "<title>Hooked</title>" in html
        assert "Bonjour" in html

    @pytest.mark.asyncio
    async def test__style_collector__spliced_after_head(self, tmp_path: Path) -> None:
        """Put the collected style block first in the head."""
        seen = []

        def create_root(is_client, path=None):
            return AppContext(
                routes=ROUTES,
                get_style_collector=Collector,
                on_app_rendered=lambda p, app_html, ctx: seen.append((p, app_html)),
            )

        await _renderer(tmp_path, create_root=create_root).render("/")

        html = (tmp_path / "index.html").read_text()
        assert "<head><style>.intro{color:red}</style>" in html
        assert seen == [("/", "<p class='intro'>Hello</p>")]

    @pytest.mark.asyncio
    async def test__nested_minified__directory_index(self, tmp_path: Path) -> None:
        """Write nested output and minify it."""
        options = RenderConfig(dir_style="nested", formatting="minify")

        result = await _renderer(tmp_path, options=options).render("/")

        assert result.output_path == tmp_path / "index.html"
        assert "\n" not in result.output_path.read_text().strip()

    @pytest.mark.asyncio
    async def test__critical_css__runs_in_serial_pool(self, tmp_path: Path) -> None:
        """Inline critical CSS through the critical pool."""
        (tmp_path / "app.css").write_text(".intro { color: blue; } .other { color: green; }")
        shell = SHELL.replace("</head>", '<link rel="stylesheet" href="/app.css"></head>')
        async with WorkerPool(1) as pool:
            renderer = _renderer(
                tmp_path,
                shell,
                critical=CriticalCss(tmp_path, CriticalCssConfig(compress=False)),
                critical_pool=pool,
            )
            await renderer.render("/")

        assert pool.peak == 1

        html = (tmp_path / "index.html").read_text()
        assert "<style>.intro{color: blue;}</style>" in html
        assert 'media="print"' in html
