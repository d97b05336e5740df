"""Deadlines spanning several cluster and Kubernetes calls."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

from .exceptions import ControllerTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """One deadline shared by a sequence of calls.

    A membership sync is a sequence of Kubernetes and etcd calls that must
    all complete within one overall deadline. Each call is given the time
    remaining as its request timeout, and the whole sequence can be wrapped
    in `enforce` so that expiry surfaces as a single exception.

    Parameters
    ----------
    operation
        Name of the operation, used in the timeout error.
    timeout
        Time allowed from creation until the deadline.
    """

    def __init__(self, operation: str, timeout: timedelta) -> None:
        self._operation = operation
        self._timeout = timeout
        self._start = datetime.now(tz=UTC)

    @property
    def operation(self) -> str:
        """Name of the operation being timed."""
        return self._operation

    def elapsed(self) -> float:
        """Time used so far.

        Returns
        -------
        float
            Seconds since creation.
        """
        now = datetime.now(tz=UTC)
        return (now - self._start).total_seconds()

    @asynccontextmanager
    async def enforce(self) -> AsyncIterator[None]:
        """Cancel the enclosed block when the deadline passes.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired inside the enclosed block.
        """
        try:
            async with asyncio.timeout(self.left()):
                yield
        except TimeoutError as e:
            raise self._error() from e

    def left(self) -> float:
        """Seconds until the deadline.

        Also used as a checkpoint before operations that must not start once
        the deadline has passed.

        Returns
        -------
        float
            Remaining time, always positive.

        Raises
        ------
        ControllerTimeoutError
            Raised if the deadline has already passed.
        """
        now = datetime.now(tz=UTC)
        left = (self._timeout - (now - self._start)).total_seconds()
        if left <= 0.0:
            raise self._error(now)
        return left

    def _error(self, now: datetime | None = None) -> ControllerTimeoutError:
        return ControllerTimeoutError(
            self._operation,
            started_at=self._start,
            failed_at=now or datetime.now(tz=UTC),
        )
