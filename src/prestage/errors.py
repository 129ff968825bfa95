"""Prestage exception hierarchy.

Discovery, manifest and bundler failures abort the build before any page is
rendered. Render failures are collected per route and surfaced together once
every route has been attempted.
"""


class PrestageError(Exception):
    """Base for all prestage errors."""


class DiscoveryError(PrestageError):
    """Raised when application code fails during route enumeration."""

    def __init__(self, route_path: str, cause: BaseException) -> None:
        self.route_path = route_path
        self.cause = cause
        super().__init__(f"Route discovery failed for {route_path!r}: {cause}")


class ManifestError(PrestageError):
    """Raised when a file required after the client build is missing or invalid."""


class FatalBuildError(PrestageError):
    """Raised when a bundler invocation fails."""


class RenderError(PrestageError):
    """Failure while rendering a single page.

    The message always carries the offending route path and the
    underlying cause's text.
    """

    def __init__(self, path: str, cause: BaseException) -> None:
        self.path = path
        self.cause = cause
        detail = str(cause) or type(cause).__name__
        super().__init__(f"Error on page {path}: {type(cause).__name__}: {detail}")


class BuildFailedError(PrestageError):
    """Raised after rendering when one or more pages failed."""

    def __init__(self, errors: list[RenderError]) -> None:
        self.errors = errors
        paths = ", ".join(error.path for error in errors)
        super().__init__(f"{len(errors)} page(s) failed to render: {paths}")


class RouteResponseError(PrestageError):
    """Raised when a route answers with a response instead of markup.

    Redirects and error statuses cannot be written as static pages.
    """

    def __init__(self, path: str, status: int, location: str | None = None) -> None:
        self.path = path
        self.status = status
        self.location = location
        target = f" to {location}" if location else ""
        super().__init__(f"Route {path} responded with status {status}{target}")
