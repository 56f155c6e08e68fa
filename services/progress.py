"""Progress callback dispatch shared by the pipeline stages."""

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

ProgressCallback = Callable[[Any], Union[None, Awaitable[None]]]


async def emit_progress(callback: Optional[ProgressCallback], progress: Any) -> None:
    """Invoke a sync or async progress callback, if one was given."""
    if callback is None:
        return
    result = callback(progress)
    if inspect.isawaitable(result):
        await result
