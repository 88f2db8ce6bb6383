"""
Status polling.

Two loops read printer status:

* wait_for_page_completion runs inside a print job after each page and
  returns once the printer is back in the editing phase.
* StatusHeartbeat refreshes the status while idle so a front end can show
  whether tape is loaded or the cover is open.

Both go through the caller's query function; the heartbeat uses the
manager's locked query, so it cannot interleave with a print.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

from .results import QueryCommunicationError, QueryDeviceError, QueryResult, QuerySuccess

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.25
DEFAULT_HEARTBEAT_INTERVAL = 0.3


async def wait_for_page_completion(
    query: Callable[..., Awaitable[QueryResult]],
    timeout: float,
    interval: float = DEFAULT_POLL_INTERVAL,
) -> Optional[Union[QuerySuccess, QueryDeviceError]]:
    """
    Poll until the printer reports phase type 0 (idle).

    The status request is not re-sent; the printer must not receive
    writes while printing, so only reads are issued. Read timeouts are
    normal while the printer is busy and are retried until the deadline.

    Args:
        query: Engine query coroutine, called with request=False
        timeout: Deadline in seconds, measured from the call
        interval: Delay before each poll

    Returns:
        QuerySuccess when the page completed, QueryDeviceError if the
        printer reported an error (the job must be aborted), or None if
        the deadline passed
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0

    log.debug("Polling for page completion, read errors are expected")
    while loop.time() < deadline:
        await asyncio.sleep(interval)
        attempts += 1

        result = await query(request=False)

        if isinstance(result, QueryDeviceError):
            log.warning("Printer reported an error while printing: %s", result.status)
            return result
        if isinstance(result, QuerySuccess):
            log.debug("Poll %d: %s", attempts, result.status)
            if result.status.is_idle:
                return result
        elif isinstance(result, QueryCommunicationError):
            log.debug("Poll %d: %s", attempts, result.error.value)

    log.warning("Timeout waiting for printer status after %d polls", attempts)
    return None


class StatusHeartbeat:
    """Periodically re-issues a status query while started."""

    def __init__(
        self,
        query: Callable[[], Awaitable[QueryResult]],
        interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ):
        self.query = query
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def _run(self) -> None:
        while True:
            try:
                await self.query()
            except Exception:
                log.exception("Heartbeat query failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start beating. Must be called from a running event loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None
