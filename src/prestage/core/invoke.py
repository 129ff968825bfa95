"""Call sync or async application callables uniformly.

Route loaders, components, application factories and build hooks can all
be ``def`` or ``async def``. The sync/async check lives here only.
"""

import inspect
from typing import Any


async def invoke(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Call ``func`` and await the result if it is awaitable."""
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
