"""Resource hint injection.

Adds ``<link>`` hints for the chunks a route may need to the document head.
Modules the render pass used are preloaded; modules that are only
reachable through dynamic imports are prefetched. The route's own entry
chunks are booted by the client entry, so they only contribute their
stylesheets.
"""

import logging
from collections.abc import Iterable
from pathlib import PurePosixPath

from bs4 import BeautifulSoup, Tag

from prestage.core.manifest import BuildManifests

logger = logging.getLogger(__name__)

_SCRIPT_SUFFIXES = {".js", ".mjs"}
_STYLE_SUFFIXES = {".css"}


def module_files(module_id: str, manifests: BuildManifests, base: str = "/") -> tuple[str, ...]:
    """Return the emitted URLs of a module.

    The SSR runtime manifest is authoritative. Modules it does not list
    fall back to the module manifest's file and CSS.

    Args:
        module_id: Module identifier
        manifests: Client build manifests
        base: Public base URL for module manifest paths

    Returns:
        Tuple of URLs, empty if the module is unknown
    """
    files = manifests.ssr_manifest.get(module_id)
    if files:
        return files

    item = manifests.manifest.get(module_id)
    if item is None:
        return ()

    prefix = base if base.endswith("/") else f"{base}/"
    return tuple(f"{prefix}{file.lstrip('/')}" for file in (item.file, *item.css))


def render_preload_links(
    document: BeautifulSoup,
    modules: Iterable[str],
    manifests: BuildManifests,
    *,
    own_entries: Iterable[str] = (),
    used_modules: Iterable[str] | None = None,
) -> list[str]:
    """Append resource hints for the given modules to the document head.

    Args:
        document: Parsed page document, modified in place
        modules: Modules reachable from the route's entries
        manifests: Client build manifests
        own_entries: Entry chunks serving the route itself
        used_modules: Modules the render pass reported as used. None treats
            every module as used.

    Returns:
        URLs that received a hint, in insertion order

    Raises:
        ValueError: If the document has no head element
    """
    head = document.head
    if head is None:
        raise ValueError("Document has no <head> element")

    own = set(own_entries)
    used = None if used_modules is None else set(used_modules)
    referenced = _referenced_urls(document)
    added: list[str] = []

    for module_id in sorted(set(modules)):
        eager = used is None or module_id in used or module_id in own
        for url in module_files(module_id, manifests):
            if url in referenced:
                continue
            suffix = PurePosixPath(url.split("?", 1)[0]).suffix
            if module_id in own and suffix not in _STYLE_SUFFIXES:
                continue
            link = _create_link(document, url, suffix, eager=eager)
            if link is None:
                continue
            head.append(link)
            referenced.add(url)
            added.append(url)

    if added:
        logger.debug(f"Injected {len(added)} resource hint(s)")
    return added


def _referenced_urls(document: BeautifulSoup) -> set[str]:
    urls = {str(tag["href"]) for tag in document.find_all("link", href=True)}
    urls.update(str(tag["src"]) for tag in document.find_all("script", src=True))
    return urls


def _create_link(document: BeautifulSoup, url: str, suffix: str, *, eager: bool) -> Tag | None:
    if suffix in _SCRIPT_SUFFIXES:
        if eager:
            return document.new_tag("link", attrs={"rel": "modulepreload", "crossorigin": "", "href": url})
        return document.new_tag("link", attrs={"rel": "prefetch", "href": url})

    if suffix in _STYLE_SUFFIXES:
        if eager:
            return document.new_tag("link", attrs={"rel": "stylesheet", "href": url})
        return document.new_tag("link", attrs={"rel": "prefetch", "as": "style", "href": url})

    return None
