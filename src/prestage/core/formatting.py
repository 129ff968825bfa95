"""Output formatting for rendered pages."""

import minify_html
from bs4 import BeautifulSoup

FORMATTING_CHOICES = ("none", "minify", "prettify")


def format_html(html: str, formatting: str) -> str:
    """Format a rendered page.

    Args:
        html: Page markup
        formatting: "none", "minify" or "prettify"

    Returns:
        Formatted markup; unchanged for "none"

    Raises:
        ValueError: If formatting is unknown
    """
    if formatting == "none":
        return html
    if formatting == "minify":
        return minify_html.minify(
            html,
            minify_css=True,
            minify_js=True,
            keep_closing_tags=True,
            keep_html_and_head_opening_tags=True,
        )
    if formatting == "prettify":
        return BeautifulSoup(html, "html.parser").prettify()
    raise ValueError(f"Unknown formatting {formatting!r}, expected one of {FORMATTING_CHOICES}")
