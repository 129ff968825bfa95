"""Browser global shim for applications that touch the DOM at import time."""

from __future__ import annotations

import builtins
import logging
from collections.abc import Callable
from types import SimpleNamespace

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

_GLOBALS = ("window", "document", "navigator", "location")
_MISSING = object()

_EMPTY_DOCUMENT = "<!DOCTYPE html><html><head></head><body></body></html>"


def install_dom_globals(url: str = "http://localhost/") -> Callable[[], None]:
    """Expose ``window``, ``document``, ``navigator`` and ``location`` as builtins.

    ``document`` is an empty BeautifulSoup document. Existing builtins with
    the same names are saved and restored on uninstall.

    Args:
        url: Value of ``location.href``

    Returns:
        Callable removing the globals again
    """
    document = BeautifulSoup(_EMPTY_DOCUMENT, "html.parser")
    location = SimpleNamespace(href=url, pathname="/", search="", hash="")
    navigator = SimpleNamespace(userAgent="prestage", language="en")
    window = SimpleNamespace(document=document, navigator=navigator, location=location)

    values = {"window": window, "document": document, "navigator": navigator, "location": location}
    saved = {name: getattr(builtins, name, _MISSING) for name in _GLOBALS}
    for name, value in values.items():
        setattr(builtins, name, value)
    logger.debug("Installed DOM globals")

    def uninstall() -> None:
        for name, previous in saved.items():
            if previous is _MISSING:
                if hasattr(builtins, name):
                    delattr(builtins, name)
            else:
                setattr(builtins, name, previous)
        logger.debug("Removed DOM globals")

    return uninstall
