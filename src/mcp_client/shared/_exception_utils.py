"""Helpers for collapsing BaseExceptionGroup noise from anyio task groups.

anyio task groups wrap whatever escapes them, even a single error raised in
the body, in a ``BaseExceptionGroup`` alongside the ``Cancelled`` exceptions
of the sibling tasks. Callers of the session want the original error back.
"""

from __future__ import annotations

import asyncio
import sys

if sys.version_info < (3, 11):  # pragma: no cover
    from exceptiongroup import BaseExceptionGroup


def collapse_exception_group(
    eg: BaseExceptionGroup,
    cancelled_type: type[BaseException] = asyncio.CancelledError,
) -> BaseException:
    """Extract the single real error from a *BaseExceptionGroup* if possible.

    Returns:
        * The single non-cancelled exception if exactly one exists.
        * A filtered group (cancelled noise stripped) if there are several.
        * A single cancellation if every exception is a cancellation.
    """
    # split(type) matches leaf exceptions, never the group itself
    _cancelled, non_cancelled = eg.split(cancelled_type)

    if non_cancelled is None:
        return eg.exceptions[0]

    if len(non_cancelled.exceptions) == 1 and not isinstance(non_cancelled.exceptions[0], BaseExceptionGroup):
        return non_cancelled.exceptions[0]

    return non_cancelled
