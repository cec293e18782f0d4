import asyncio
import time
from typing import Awaitable, Callable, Optional

from ._exceptions import LockTimeoutError


DEFAULT_MIN_BACKOFF = 0.01
DEFAULT_MAX_BACKOFF = 5.0


async def backoff(
    action: Callable[[], Awaitable[bool]],
    *,
    min_backoff: float = DEFAULT_MIN_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    timeout: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    now: Callable[[], float] = time.monotonic,
) -> bool:
    """Call `action` until it succeeds, sleeping with exponential backoff in between.

    The delay starts at `min_backoff` and doubles after every failed attempt,
    capped by `max_backoff` and by the time left before the deadline,
    so the last attempt happens right at the deadline.

    Args:
        action:         Coroutine function returning True on success.
        min_backoff:    The first delay, in seconds.
        max_backoff:    The longest delay, in seconds.
        timeout:        How long to keep trying, in seconds. Forever if None.
        sleep:          Coroutine function used to wait, helpful for testing.
        now:            Callback returning a monotonic clock, helpful for testing.

    Raises:
        LockTimeoutError
    """
    if min_backoff < 0 or max_backoff < min_backoff:
        raise ValueError(
            f'invalid backoff range: min={min_backoff}, max={max_backoff}',
        )
    if timeout is not None and timeout < 0:
        raise ValueError(f'timeout must be non-negative, got {timeout}')

    delay = min_backoff
    current = now()
    deadline = None if timeout is None else current + timeout
    while True:
        if await action():
            return True
        if deadline is not None and current + delay >= deadline:
            break
        await sleep(delay)

        options = [max_backoff, delay * 2]
        if deadline is not None:
            current = now()
            left = deadline - current
            if left > 0:
                options.append(left)
        delay = min(options)

    raise LockTimeoutError('backoff timed out')
