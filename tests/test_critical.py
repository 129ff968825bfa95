"""Tests for critical CSS extraction."""

from pathlib import Path

import pytest
from bs4 import BeautifulSoup
from prestage.config import CriticalCssConfig
from prestage.core.critical import (
    CriticalCss,
    create_critical_css,
    extract_critical,
    selector_matches,
)

PAGE = """<!DOCTYPE html>
<html>
<head><link rel="stylesheet" href="/assets/app.css"></head>
<body><div id="root"><h1 class="title">Hi</h1><a href="/">Home</a></div></body>
</html>
"""

STYLESHEET = """
@charset "utf-8";
@import url("other.css");
.title { color: red; animation: fade 1s ease; }
.unused { color: blue; }
a:hover, .missing:focus { text-decoration: underline; }
@media (min-width: 600px) { .title { font-size: 2em; } .unused { margin: 0; } }
@media print { .unused { display: none; } }
@keyframes fade { from { opacity: 0; } to { opacity: 1; } }
@keyframes spin { to { transform: rotate(1turn); } }
@font-face { font-family: Demo; src: url(demo.woff2); }
"""


def _soup(html: str = PAGE) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    """Create a build output directory with one stylesheet."""
    (tmp_path / "assets").mkdir()
    (tmp_path / "assets" / "app.css").write_text(STYLESHEET)
    return tmp_path


class TestSelectorMatches:
    """Tests for selector_matches()."""

    def test__present_element__matches(self) -> None:
        """Match selectors of elements in the document."""
        assert selector_matches("h1.title", _soup())
        assert not selector_matches(".unused", _soup())

    def test__pseudo_class__stripped(self) -> None:
        """Ignore stateful pseudo-classes and pseudo-elements."""
        assert selector_matches("a:hover", _soup())
        assert selector_matches(".title::before", _soup())

    def test__unsupported_selector__kept(self) -> None:
        """Keep selectors the matcher cannot parse."""
        assert selector_matches("a[", _soup())


class TestExtractCritical:
    """Tests for extract_critical()."""

    def test__matching_rules__kept_with_matching_selectors(self) -> None:
        """Keep matched rules and only their matching selectors."""
        css = extract_critical(STYLESHEET, _soup())

        assert ".title{" in css
        assert ".unused" not in css
        assert "a:hover{" in css
        assert ".missing" not in css

    def test__media_blocks__filtered(self) -> None:
        """Filter grouping rules and drop them when empty."""
        css = extract_critical(STYLESHEET, _soup())

        assert "@media (min-width: 600px){.title{" in css
        assert "@media print" not in css

    def test__keyframes__only_when_referenced(self) -> None:
        """Keep keyframes used by a kept rule."""
        css = extract_critical(STYLESHEET, _soup())

        assert "@keyframes fade" in css
        assert "@keyframes spin" not in css

    def test__font_face__opt_in(self) -> None:
        """Keep @font-face only with inline_fonts."""
        assert "@font-face" not in extract_critical(STYLESHEET, _soup())
        assert "@font-face" in extract_critical(STYLESHEET, _soup(), inline_fonts=True)

    def test__import_and_charset__dropped(self) -> None:
        """Drop statements that are invalid inside a style block."""
        css = extract_critical(STYLESHEET, _soup())

        assert "@import" not in css
        assert "@charset" not in css


class TestCriticalCssProcess:
    """Tests for CriticalCss.process()."""

    def test__media_strategy__inlines_and_defers(self, out_dir: Path) -> None:
        """Inline critical rules and lazy-load the stylesheet via media=print."""
        processor = CriticalCss(out_dir, CriticalCssConfig(compress=False))

        html = processor.process(PAGE)
        soup = _soup(html)

        style = soup.head.find("style")
        assert style is not None
        assert ".title" in style.string
        link = soup.head.find("link", href="/assets/app.css", media="print")
        assert link["onload"] == "this.media='all'"
        assert soup.head.find("noscript").find("link", href="/assets/app.css") is not None

    def test__swap_strategy__preload_link(self, out_dir: Path) -> None:
        """Turn the stylesheet into a preload that swaps itself in."""
        processor = CriticalCss(out_dir, CriticalCssConfig(preload="swap"))

        soup = _soup(processor.process(PAGE))

        link = soup.head.find("link", attrs={"as": "style"})
        assert link["rel"] in ("preload", ["preload"])
        assert link["onload"] == "this.rel='stylesheet'"

    def test__none_strategy__stylesheet_untouched(self, out_dir: Path) -> None:
        """Keep the blocking stylesheet when no strategy is configured."""
        processor = CriticalCss(out_dir, CriticalCssConfig(preload="none"))

        soup = _soup(processor.process(PAGE))

        link = soup.head.find("link", href="/assets/app.css")
        assert not link.has_attr("media")
        assert soup.head.find("noscript") is None

    def test__small_stylesheet__inlined_whole(self, out_dir: Path) -> None:
        """Replace stylesheets below the threshold with their full content."""
        processor = CriticalCss(out_dir, CriticalCssConfig(inline_threshold=10_000, compress=False))

        soup = _soup(processor.process(PAGE))

        assert soup.head.find("link") is None
        assert ".unused" in soup.head.find("style").string

    def test__compress__minifies_output(self, out_dir: Path) -> None:
        """Compress the inlined rules."""
        processor = CriticalCss(out_dir, CriticalCssConfig(compress=True))

        style = _soup(processor.process(PAGE)).head.find("style").string

        assert "\n" not in style
        assert ".title{" in style

    def test__external_stylesheet__ignored(self, out_dir: Path) -> None:
        """Leave stylesheets outside the build output alone."""
        page = PAGE.replace("/assets/app.css", "https://cdn.example.com/app.css")
        processor = CriticalCss(out_dir, CriticalCssConfig())

        soup = _soup(processor.process(page))

        assert soup.head.find("style") is None
        assert not soup.head.find("link").has_attr("media")

    def test__additional_stylesheets__inlined(self, out_dir: Path) -> None:
        """Inline matched rules of extra stylesheets."""
        (out_dir / "extra.css").write_text("a { color: green; } .nope { color: black; }")
        processor = CriticalCss(
            out_dir, CriticalCssConfig(preload="none", compress=False, additional_stylesheets=["/extra.css"])
        )

        styles = [style.string for style in _soup(processor.process(PAGE)).head.find_all("style")]

        assert any("color: green" in style and ".nope" not in style for style in styles)

    def test__create__disabled_returns_none(self, out_dir: Path) -> None:
        """Return no processor when disabled."""
        assert create_critical_css(out_dir, CriticalCssConfig(enabled=False)) is None
        assert isinstance(create_critical_css(out_dir, CriticalCssConfig()), CriticalCss)
