"""Shell template handling.

Merges a rendered page body and its head metadata into the shell
``index.html`` produced by the client build.
"""

import re
import secrets
from collections.abc import Sequence
from pathlib import Path, PurePosixPath

from bs4 import BeautifulSoup

DEFAULT_ENTRY = Path("src/main.py")

_MODULE_SCRIPT = '<script type="module" '
_TITLE_RE = re.compile(r"<title\b[^>]*>.*?</title>", re.IGNORECASE | re.DOTALL)
_HTML_TAG_RE = re.compile(r"<html\b", re.IGNORECASE)
_BODY_TAG_RE = re.compile(r"<body\b", re.IGNORECASE)
_HEAD_CLOSE_RE = re.compile(r"</head>", re.IGNORECASE)


def rewrite_scripts(index_html: str, mode: str | None) -> str:
    """Annotate the shell's module scripts with ``defer`` or ``async``.

    Args:
        index_html: Shell template
        mode: "sync", "defer" or "async"; "sync" and None leave it unchanged

    Returns:
        Rewritten template
    """
    if not mode or mode == "sync":
        return index_html
    return index_html.replace(_MODULE_SCRIPT, f'<script type="module" {mode} ')


def detect_entry(root: Path) -> Path:
    """Locate the server entry module for a project.

    The client entry is the first module script of ``index.html``; the
    server entry is the Python module with the same name next to it
    (``/src/main.ts`` -> ``src/main.py``).

    Args:
        root: Project root

    Returns:
        Path to the server entry (may not exist)
    """
    index_path = root / "index.html"
    if index_path.exists():
        soup = BeautifulSoup(index_path.read_text(encoding="utf-8"), "html.parser")
        script = soup.find("script", attrs={"type": "module", "src": True})
        if script is not None:
            src = PurePosixPath(str(script["src"]).lstrip("/"))
            candidate = root / src.with_suffix(".py")
            if candidate.exists():
                return candidate
    return root / DEFAULT_ENTRY


def render_html(
    *,
    index_html: str,
    app_html: str,
    root_container_id: str = "root",
    html_attributes: str = "",
    body_attributes: str = "",
    meta_attributes: Sequence[str] = (),
) -> str:
    """Merge rendered markup into the shell template.

    Args:
        index_html: Shell template
        app_html: Rendered page body
        root_container_id: Id of the element receiving the body
        html_attributes: Attributes appended to the ``<html>`` tag
        body_attributes: Attributes appended to the ``<body>`` tag
        meta_attributes: Head fragments, inserted before ``</head>``

    Returns:
        Complete HTML document

    Raises:
        ValueError: If the template has no element with the container id
    """
    html = _fill_container(index_html, app_html, root_container_id)

    meta = "".join(fragment for fragment in meta_attributes if fragment)
    if meta:
        if _TITLE_RE.search(meta):
            html = _TITLE_RE.sub("", html, count=1)
        html = _HEAD_CLOSE_RE.sub(lambda _: f"{meta}</head>", html, count=1)

    if html_attributes:
        html = _HTML_TAG_RE.sub(lambda m: f"{m.group(0)} {html_attributes}", html, count=1)
    if body_attributes:
        html = _BODY_TAG_RE.sub(lambda m: f"{m.group(0)} {body_attributes}", html, count=1)

    return html


def _fill_container(index_html: str, app_html: str, container_id: str) -> str:
    container = f'<div id="{container_id}"></div>'
    if container in index_html:
        return index_html.replace(
            container,
            f'<div id="{container_id}" data-server-rendered="true">{app_html}</div>',
            1,
        )

    soup = BeautifulSoup(index_html, "html.parser")
    element = soup.find(id=container_id)
    if element is None:
        raise ValueError(
            f'Could not find a tag with id="{container_id}" to replace it with server-side rendered HTML'
        )

    # Placeholder keeps the rendered markup byte-exact
    placeholder = f"prestage-outlet-{secrets.token_hex(8)}"
    element.clear()
    element["data-server-rendered"] = "true"
    element.string = placeholder
    return str(soup).replace(placeholder, app_html, 1)
