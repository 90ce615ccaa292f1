"""Correlation of outstanding requests with their responses.

The table is the only structure shared between the session's dispatch loop
and the tasks issuing requests. Every registered call is resolved exactly
once: by its response, by a timeout, by an explicit cancel, or by a drain when
the session closes or the connection is lost. Whatever comes later for the
same id finds no entry and is discarded.
"""

from __future__ import annotations

import logging
import threading

import anyio
from pydantic import JsonValue

from mcp_client.shared.exceptions import (
    McpClientError,
    RequestCancelled,
    RequestTimeout,
    SessionClosed,
    error_from_response,
)
from mcp_client.types import JSONRPCError, JSONRPCResponse, RequestId

logger = logging.getLogger(__name__)

Outcome = JSONRPCResponse | JSONRPCError | McpClientError


class PendingCall:
    """A request awaiting its single terminal outcome.

    Only the table writes the outcome; only the task that issued the request
    reads it.
    """

    def __init__(self, table: CorrelationTable, request_id: RequestId, method: str, timeout: float | None) -> None:
        self.request_id = request_id
        self.method = method
        self.deadline = anyio.current_time() + timeout if timeout is not None else None
        self._table = table
        self._event = anyio.Event()
        self._outcome: Outcome | None = None

    def __repr__(self) -> str:
        return f"PendingCall(request_id={self.request_id!r}, method={self.method!r}, done={self.done})"

    @property
    def done(self) -> bool:
        return self._event.is_set()

    def _set_outcome(self, outcome: Outcome) -> None:
        self._outcome = outcome
        self._event.set()

    async def wait(self, timeout: float | None = None) -> JsonValue:
        """Wait for the response and return its result.

        The deadline is ``timeout`` seconds from now if given, otherwise the
        one fixed at registration. When it passes, the call is cancelled in
        the table and RequestTimeout is raised; a response arriving later is
        discarded. Cancelling the waiting task removes the call the same way.

        Raises:
            RequestError: If the server answered with an error
            RequestTimeout: If the deadline passed first
            RequestCancelled: If the call was cancelled
            ConnectionLost: If the connection was lost or the session closed
        """
        deadline = anyio.current_time() + timeout if timeout is not None else self.deadline
        delay = None if deadline is None else max(deadline - anyio.current_time(), 0)
        try:
            with anyio.fail_after(delay):
                await self._event.wait()
        except TimeoutError:
            self._table.cancel(
                self.request_id,
                RequestTimeout(
                    f"Timed out waiting for a response to {self.method!r} (request {self.request_id!r})",
                    method=self.method,
                    request_id=self.request_id,
                ),
            )
        except anyio.get_cancelled_exc_class():
            self._table.cancel(self.request_id)
            raise
        return self._unwrap()

    def _unwrap(self) -> JsonValue:
        outcome = self._outcome
        if isinstance(outcome, JSONRPCResponse):
            return outcome.result
        if isinstance(outcome, JSONRPCError):
            raise error_from_response(outcome.error, method=self.method, request_id=self.request_id)
        assert outcome is not None, "PendingCall read before it was resolved"
        raise outcome


class CorrelationTable:
    """Maps outstanding request ids to their pending calls."""

    def __init__(self) -> None:
        self._pending: dict[RequestId, PendingCall] = {}
        # Guards _pending; never held across an await.
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def pending_ids(self) -> list[RequestId]:
        with self._lock:
            return list(self._pending)

    def register(self, request_id: RequestId, method: str, timeout: float | None = None) -> PendingCall:
        """Create the pending call for a request about to be sent."""
        with self._lock:
            if request_id in self._pending:
                raise ValueError(f"Request id {request_id!r} is already pending")
            call = PendingCall(self, request_id, method, timeout)
            self._pending[request_id] = call
        return call

    def _take(self, request_id: RequestId) -> PendingCall | None:
        with self._lock:
            return self._pending.pop(request_id, None)

    def resolve(self, request_id: RequestId, outcome: Outcome) -> bool:
        """Complete a pending call.

        Returns False if the id is unknown or was already resolved; late and
        duplicate responses are expected and ignored.
        """
        call = self._take(request_id)
        if call is None:
            return False
        call._set_outcome(outcome)
        return True

    def cancel(self, request_id: RequestId, error: McpClientError | None = None) -> bool:
        """Resolve a pending call with a cancellation (or the given error)."""
        call = self._take(request_id)
        if call is None:
            return False
        if error is None:
            error = RequestCancelled(
                f"Request {request_id!r} ({call.method}) was cancelled", method=call.method, request_id=request_id
            )
        call._set_outcome(error)
        return True

    def drain_all(self, reason: str, error_type: type[McpClientError] = SessionClosed) -> int:
        """Resolve every pending call with ``error_type(reason)``.

        Returns the number of calls that were still pending.
        """
        with self._lock:
            calls = list(self._pending.values())
            self._pending.clear()
        for call in calls:
            call._set_outcome(error_type(reason, method=call.method, request_id=call.request_id))
        if calls:
            logger.debug("Resolved %d pending request(s): %s", len(calls), reason)
        return len(calls)
