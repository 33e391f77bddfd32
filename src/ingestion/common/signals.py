"""Cross-platform signal handler setup for graceful shutdown."""

import asyncio
import logging
import signal
from collections.abc import Callable

logger = logging.getLogger(__name__)


def setup_shutdown_signal_handlers(
    on_shutdown: Callable[[], None],
    on_force: Callable[[], None] | None = None,
) -> None:
    """Register SIGTERM/SIGINT handlers with two-stage escalation.

    The first signal invokes on_shutdown (graceful: finish in-flight envelopes,
    commit, close). Any later signal invokes on_force when given, otherwise
    on_shutdown again.

    On Unix, uses the event loop's add_signal_handler(). On Windows,
    falls back to signal.signal() since add_signal_handler() is not supported.
    """
    received = 0

    def _dispatch(signum: int | None = None) -> None:
        nonlocal received
        received += 1
        if received == 1:
            logger.info(
                "Received shutdown signal, finishing in-flight work",
                extra={"signal": signum},
            )
            on_shutdown()
        elif on_force is not None:
            logger.warning(
                "Received second signal, forcing immediate shutdown",
                extra={"signal": signum},
            )
            on_force()
        else:
            on_shutdown()

    loop = asyncio.get_event_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _dispatch, sig)
    except NotImplementedError:
        def _handler(signum, frame):
            _dispatch(signum)

        signal.signal(signal.SIGTERM, _handler)
        signal.signal(signal.SIGINT, _handler)
