"""Shared test fixtures."""

import json
from pathlib import Path

import pytest
from prestage.bundler import stage_server_entry
from prestage.config import BuildConfig, Config, CriticalCssConfig, RenderConfig

SHELL_HTML = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8">
    <title>Shell</title>
    <script type="module" crossorigin src="/assets/app.js"></script>
  </head>
  <body>
    <div id="root"></div>
  </body>
</html>
"""

MANIFEST = {
    "app": {"file": "assets/app.js", "isEntry": True, "dynamicImports": ["about"]},
    "about": {"file": "assets/about.js"},
}

ENTRY_SOURCE = '''
from prestage.core.routes import RouteRecord
from prestage.core.types import AppContext


def layout(ctx):
    ctx.head.title = "Demo"
    return f"<main>{ctx.outlet}</main>"


def home(ctx):
    return "<h1>Home</h1>"


def about(ctx):
    return "<h1>About</h1>"


def post(ctx):
    return f"<h1>Post {ctx.params['id']}</h1>"


async def load_about():
    return [RouteRecord(index=True, component=about)]


ROUTES = (
    RouteRecord(
        path="/",
        entry="app",
        component=layout,
        children=(
            RouteRecord(index=True, component=home),
            RouteRecord(path="about", entry="about", loader=load_about),
            RouteRecord(path="posts/:id", component=post),
        ),
    ),
)


def create_root(is_client, path=None):
    return AppContext(routes=ROUTES, is_client=is_client, path=path)
'''


class FakeBundler:
    """Bundler writing canned client outputs and staging the real entry."""

    def __init__(
        self,
        *,
        manifest: dict | None = None,
        ssr_manifest: dict | None = None,
        index_html: str = SHELL_HTML,
        assets: dict[str, str] | None = None,
    ) -> None:
        self.manifest = MANIFEST if manifest is None else manifest
        self.ssr_manifest = ssr_manifest or {}
        self.index_html = index_html
        self.assets = assets or {}
        self.client_builds: list[tuple[Path, Path, str]] = []
        self.server_builds: list[tuple[Path, Path, str]] = []

    async def build_client(self, root: Path, out_dir: Path, mode: str) -> None:
        self.client_builds.append((root, out_dir, mode))
        vite_dir = out_dir / ".vite"
        vite_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / "index.html").write_text(self.index_html)
        (vite_dir / "manifest.json").write_text(json.dumps(self.manifest))
        (vite_dir / "ssr-manifest.json").write_text(json.dumps(self.ssr_manifest))
        for name, content in self.assets.items():
            asset = out_dir / name
            asset.parent.mkdir(parents=True, exist_ok=True)
            asset.write_text(content)

    async def build_server(self, entry: Path, out_dir: Path, format: str, mode: str) -> Path:
        self.server_builds.append((entry, out_dir, format))
        return stage_server_entry(entry, out_dir, format)


@pytest.fixture
def app_root(tmp_path: Path) -> Path:
    """Create an application root with a server entry module."""
    root = tmp_path / "app"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text(ENTRY_SOURCE)
    return root


@pytest.fixture
def test_config(app_root: Path) -> Config:
    """Create a test configuration rooted at app_root.

    The watchdog is disabled so builds never terminate the test process,
    and critical CSS is off unless a test enables it.
    """
    return Config(
        build=BuildConfig(
            root=app_root,
            out_dir=app_root / "dist",
            entry=app_root / "src" / "main.py",
            watchdog_seconds=0,
        ),
        render=RenderConfig(),
        critical_css=CriticalCssConfig(enabled=False),
    )


@pytest.fixture
def bundler() -> FakeBundler:
    """Create a fake bundler with the default two-route manifest."""
    return FakeBundler()


@pytest.fixture(autouse=True)
def _clean_build_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep environment variables set by builds local to each test.

    Empty values are ignored by the build, and monkeypatch removes them
    again on teardown.
    """
    for name in ("PRESTAGE_SSG", "MODE", "NODE_ENV"):
        monkeypatch.setenv(name, "")
