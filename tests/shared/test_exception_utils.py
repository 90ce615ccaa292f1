"""Tests for mcp_client.shared._exception_utils."""

from __future__ import annotations

import asyncio
import sys

from mcp_client.shared._exception_utils import collapse_exception_group

if sys.version_info < (3, 11):
    from exceptiongroup import BaseExceptionGroup


class TestCollapseExceptionGroup:
    def test_single_real_error_with_cancelled_siblings(self) -> None:
        """One real error + N Cancelled → unwrap to the real error."""
        real = ConnectionError("lost connection")
        eg = BaseExceptionGroup("task group", [real, asyncio.CancelledError(), asyncio.CancelledError()])
        assert collapse_exception_group(eg) is real

    def test_all_cancelled(self) -> None:
        eg = BaseExceptionGroup("task group", [asyncio.CancelledError(), asyncio.CancelledError()])
        assert isinstance(collapse_exception_group(eg), asyncio.CancelledError)

    def test_multiple_real_errors(self) -> None:
        """Multiple non-Cancelled errors → filtered group without the Cancelled."""
        e1 = ValueError("bad value")
        e2 = RuntimeError("runtime issue")
        eg = BaseExceptionGroup("task group", [e1, asyncio.CancelledError(), e2])

        result = collapse_exception_group(eg)

        assert isinstance(result, BaseExceptionGroup)
        assert list(result.exceptions) == [e1, e2]

    def test_custom_cancelled_type(self) -> None:
        class Stop(BaseException):
            pass

        real = KeyError("missing")
        eg = BaseExceptionGroup("task group", [Stop(), real])
        assert collapse_exception_group(eg, Stop) is real
