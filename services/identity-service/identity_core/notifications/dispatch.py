"""Time-bounded hand-off of composed mail to a dispatcher."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from ..domain.contracts import EmailMessage
from ..domain.ports import NotificationDispatcher

logger = logging.getLogger(__name__)


def send_with_timeout(
    dispatcher: NotificationDispatcher, message: EmailMessage, timeout: float
) -> bool:
    """Make one delivery attempt and report whether it succeeded.

    The dispatcher runs on a worker thread. If it has not finished within
    ``timeout`` seconds the attempt is abandoned and counted as failed; a
    raised exception or a ``False`` return is also a failure.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mail-dispatch")
    future = executor.submit(
        dispatcher.send, message.to_address, message.subject, message.body, message.is_html
    )
    try:
        delivered = bool(future.result(timeout=timeout))
    except FutureTimeoutError:
        logger.warning("mail to %s timed out after %.1fs", message.to_address, timeout)
        return False
    except Exception as exc:
        logger.warning("mail to %s failed: %s", message.to_address, exc)
        return False
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if not delivered:
        logger.warning("dispatcher refused mail to %s", message.to_address)
    return delivered
