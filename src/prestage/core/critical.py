"""Critical CSS extraction.

Inlines the rules of a page's local stylesheets that match elements present
in the rendered markup, then defers loading of the full stylesheet. Runs
synchronously; callers push it off the event loop and serialize it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path
from urllib.parse import urlsplit

import csscompressor
import soupsieve
import tinycss2
from bs4 import BeautifulSoup, Tag

from prestage.config import CriticalCssConfig

logger = logging.getLogger(__name__)

_PSEUDO_RE = re.compile(r"(?<!\\)::?[a-zA-Z-]+(?![a-zA-Z-(])")
_GROUPING_RULES = {"media", "supports", "layer", "container"}
_DROPPED_RULES = {"import", "charset", "namespace"}


class CriticalCss:
    """Inline critical CSS into rendered pages.

    Stylesheets are read from the client build output directory and cached
    by href, so every page reads each file once.
    """

    def __init__(self, out_dir: Path, options: CriticalCssConfig) -> None:
        """Initialize processor.

        Args:
            out_dir: Client build output directory
            options: Critical CSS options
        """
        self._out_dir = out_dir.resolve()
        self._options = options
        self._cache: dict[str, str | None] = {}

    def process(self, html: str) -> str:
        """Inline the critical rules of every local stylesheet.

        Args:
            html: Complete page document

        Returns:
            Document with critical ``<style>`` blocks and deferred stylesheets
        """
        soup = BeautifulSoup(html, "html.parser")
        inlined = 0

        for link in soup.find_all("link", rel="stylesheet", href=True):
            if link.get("media") == "print" or link.find_parent("noscript") is not None:
                continue
            href = str(link["href"])
            css = self._read_stylesheet(href)
            if css is None:
                continue

            if 0 < len(css) < self._options.inline_threshold:
                style = soup.new_tag("style")
                style.string = self._compress(css)
                link.replace_with(style)
                inlined += 1
                continue

            critical = self._compress(extract_critical(css, soup, inline_fonts=self._options.inline_fonts))
            if critical:
                style = soup.new_tag("style")
                style.string = critical
                link.insert_before(style)
                inlined += 1
            self._defer(soup, link)

        extra = self._additional_css(soup)
        if extra and soup.head is not None:
            style = soup.new_tag("style")
            style.string = extra
            soup.head.append(style)
            inlined += 1

        logger.debug(f"Inlined {inlined} critical style block(s)")
        return str(soup)

    def _additional_css(self, soup: BeautifulSoup) -> str:
        parts = []
        for href in self._options.additional_stylesheets:
            css = self._read_stylesheet(href)
            if css is None:
                logger.warning(f"Additional stylesheet not found: {href}")
                continue
            parts.append(extract_critical(css, soup, inline_fonts=self._options.inline_fonts))
        return self._compress("".join(parts))

    def _compress(self, css: str) -> str:
        if self._options.compress and css:
            return csscompressor.compress(css)
        return css

    def _defer(self, soup: BeautifulSoup, link: Tag) -> None:
        strategy = self._options.preload
        if strategy == "none":
            return

        fallback = soup.new_tag("noscript")
        fallback.append(soup.new_tag("link", attrs={"rel": "stylesheet", "href": link["href"]}))

        if strategy == "media":
            link["media"] = "print"
            link["onload"] = "this.media='all'"
        elif strategy == "swap":
            link["rel"] = "preload"
            link["as"] = "style"
            link["onload"] = "this.rel='stylesheet'"
        else:
            raise ValueError(f"Unknown preload strategy {strategy!r}")

        link.insert_after(fallback)

    def _read_stylesheet(self, href: str) -> str | None:
        if href not in self._cache:
            self._cache[href] = self._load(href)
        return self._cache[href]

    def _load(self, href: str) -> str | None:
        parts = urlsplit(href)
        if parts.scheme or parts.netloc:
            return None
        path = (self._out_dir / parts.path.lstrip("/")).resolve()
        if not path.is_relative_to(self._out_dir) or not path.is_file():
            logger.debug(f"Stylesheet {href} is not in the build output, skipping")
            return None
        return path.read_text(encoding="utf-8")


def create_critical_css(out_dir: Path, options: CriticalCssConfig) -> CriticalCss | None:
    """Create a processor, or None when critical CSS is disabled."""
    if not options.enabled:
        return None
    return CriticalCss(out_dir, options)


def extract_critical(css: str, document: BeautifulSoup, *, inline_fonts: bool = False) -> str:
    """Return the rules of a stylesheet that apply to a document.

    Qualified rules keep only their matching selectors. Grouping at-rules
    are filtered recursively and dropped when empty. ``@keyframes`` survive
    when a kept rule references them; ``@font-face`` only with
    ``inline_fonts``.

    Args:
        css: Stylesheet text
        document: Parsed page
        inline_fonts: Keep ``@font-face`` rules

    Returns:
        Serialized critical rules
    """
    rules = tinycss2.parse_stylesheet(css, skip_comments=True, skip_whitespace=True)
    kept, animations, keyframes = _filter_rules(rules, document, inline_fonts)

    parts = kept
    parts.extend(text for name, text in keyframes if name in animations)
    return "".join(parts)


def _filter_rules(
    rules: Iterable[object],
    document: BeautifulSoup,
    inline_fonts: bool,
) -> tuple[list[str], set[str], list[tuple[str, str]]]:
    kept: list[str] = []
    animations: set[str] = set()
    keyframes: list[tuple[str, str]] = []

    for rule in rules:
        if rule.type == "qualified-rule":
            selectors = [
                selector for selector in split_selectors(rule.prelude) if selector_matches(selector, document)
            ]
            if not selectors:
                continue
            animations.update(_animation_names(rule.content))
            kept.append(f"{','.join(selectors)}{{{tinycss2.serialize(rule.content).strip()}}}")

        elif rule.type == "at-rule":
            keyword = rule.lower_at_keyword
            prelude = tinycss2.serialize(rule.prelude).strip()
            if keyword in _DROPPED_RULES:
                continue
            if keyword.endswith("keyframes"):
                keyframes.append((prelude, f"@{rule.at_keyword} {prelude}{{{tinycss2.serialize(rule.content or [])}}}"))
            elif keyword == "font-face":
                if inline_fonts:
                    kept.append(f"@font-face{{{tinycss2.serialize(rule.content or []).strip()}}}")
            elif keyword in _GROUPING_RULES:
                if rule.content is None:
                    kept.append(f"@{rule.at_keyword} {prelude};")
                    continue
                nested = tinycss2.parse_rule_list(rule.content, skip_comments=True, skip_whitespace=True)
                inner, inner_animations, inner_keyframes = _filter_rules(nested, document, inline_fonts)
                animations.update(inner_animations)
                keyframes.extend(inner_keyframes)
                if inner:
                    kept.append(f"@{rule.at_keyword} {prelude}{{{''.join(inner)}}}")

    return kept, animations, keyframes


def split_selectors(prelude: Sequence[object]) -> list[str]:
    """Split a selector list prelude at its top-level commas."""
    groups: list[list[object]] = [[]]
    for token in prelude:
        if token.type == "literal" and token.value == ",":
            groups.append([])
        else:
            groups[-1].append(token)
    return [text for text in (tinycss2.serialize(group).strip() for group in groups) if text]


def selector_matches(selector: str, document: BeautifulSoup) -> bool:
    """Whether a selector could apply to an element of the document.

    Stateful pseudo-classes and pseudo-elements are stripped before
    matching. Selectors the matcher cannot evaluate are kept.
    """
    stripped = _PSEUDO_RE.sub("", selector).strip()
    if not stripped or stripped in {"*", ">", "+", "~"}:
        return True
    try:
        return document.select_one(stripped) is not None
    except (soupsieve.SelectorSyntaxError, NotImplementedError):
        return True


def _animation_names(content: Sequence[object] | None) -> set[str]:
    names: set[str] = set()
    if not content:
        return names
    for declaration in tinycss2.parse_declaration_list(content, skip_comments=True, skip_whitespace=True):
        if declaration.type != "declaration":
            continue
        if declaration.lower_name in {"animation", "animation-name"}:
            names.update(token.value for token in declaration.value if token.type == "ident")
    return names
