"""Tests for resource hint injection."""

import pytest
from bs4 import BeautifulSoup
from prestage.core.manifest import BuildManifests, parse_manifest, parse_ssr_manifest
from prestage.core.preload import module_files, render_preload_links


@pytest.fixture
def manifests() -> BuildManifests:
    """Create manifests with a JS+CSS entry and two lazy chunks."""
    return BuildManifests(
        manifest=parse_manifest({
            "app": {"file": "assets/app.js", "css": ["assets/app.css"], "dynamicImports": ["about", "blog"]},
            "about": {"file": "assets/about.js", "css": ["assets/about.css"]},
            "blog": {"file": "assets/blog.js"},
        }),
        ssr_manifest=parse_ssr_manifest({"blog": ["/assets/blog.js", "/assets/blog.css"]}),
        index_html="",
    )


def _document(head: str = "") -> BeautifulSoup:
    return BeautifulSoup(f"<html><head>{head}</head><body></body></html>", "html.parser")


def _rel(link) -> str:
    rel = link["rel"]
    return rel if isinstance(rel, str) else " ".join(rel)


def _links(document: BeautifulSoup) -> list[tuple[str, str]]:
    return [(_rel(link), link["href"]) for link in document.head.find_all("link")]


class TestModuleFiles:
    """Tests for module_files()."""

    def test__ssr_manifest__preferred(self, manifests: BuildManifests) -> None:
        """Use the SSR manifest when it lists the module."""
        assert module_files("blog", manifests) == ("/assets/blog.js", "/assets/blog.css")

    def test__module_manifest__fallback_with_base(self, manifests: BuildManifests) -> None:
        """Prefix module manifest files with the base URL."""
        assert module_files("about", manifests) == ("/assets/about.js", "/assets/about.css")
        assert module_files("about", manifests, base="/site") == ("/site/assets/about.js", "/site/assets/about.css")

    def test__unknown_module__empty(self, manifests: BuildManifests) -> None:
        """Return nothing for unknown modules."""
        assert module_files("ghost", manifests) == ()


class TestRenderPreloadLinks:
    """Tests for render_preload_links()."""

    def test__own_entry__only_stylesheets(self, manifests: BuildManifests) -> None:
        """Give the route's own entry its CSS but no script hint."""
        document = _document()

        render_preload_links(document, {"app"}, manifests, own_entries={"app"}, used_modules={"app"})

        assert _links(document) == [("stylesheet", "/assets/app.css")]

    def test__unused_modules__prefetched(self, manifests: BuildManifests) -> None:
        """Prefetch modules the render pass did not use."""
        document = _document()

        render_preload_links(
            document, {"app", "about", "blog"}, manifests, own_entries={"app"}, used_modules={"app"}
        )

        assert _links(document) == [
            ("prefetch", "/assets/about.js"),
            ("prefetch", "/assets/about.css"),
            ("stylesheet", "/assets/app.css"),
            ("prefetch", "/assets/blog.js"),
            ("prefetch", "/assets/blog.css"),
        ]
        style_prefetch = document.head.find("link", href="/assets/about.css")
        assert style_prefetch["as"] == "style"

    def test__used_modules__modulepreloaded(self, manifests: BuildManifests) -> None:
        """Preload modules the render pass used."""
        document = _document()

        render_preload_links(document, {"about"}, manifests, used_modules={"about"})

        preload = document.head.find("link", href="/assets/about.js")
        assert _rel(preload) == "modulepreload"
        assert preload.has_attr("crossorigin")
        assert _rel(document.head.find("link", href="/assets/about.css")) == "stylesheet"

    def test__no_usage_report__everything_eager(self, manifests: BuildManifests) -> None:
        """Treat every module as used when the renderer reports nothing."""
        document = _document()

        render_preload_links(document, {"about", "blog"}, manifests)

        assert all(rel in {"modulepreload", "stylesheet"} for rel, _ in _links(document))

    def test__existing_reference__not_duplicated(self, manifests: BuildManifests) -> None:
        """Skip URLs the document already references."""
        document = _document(
            '<script type="module" src="/assets/about.js"></script>'
            '<link rel="stylesheet" href="/assets/about.css">'
        )

        added = render_preload_links(document, {"about"}, manifests)

        assert added == []
        assert len(document.head.find_all("link")) == 1

    def test__missing_head__raises_value_error(self, manifests: BuildManifests) -> None:
        """Refuse documents without a head."""
        document = BeautifulSoup("<div></div>", "html.parser")

        with pytest.raises(ValueError, match="head"):
            render_preload_links(document, {"about"}, manifests)
