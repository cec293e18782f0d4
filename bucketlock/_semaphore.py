import logging
import random
import uuid
from typing import List, Optional

from ._backoff import DEFAULT_MAX_BACKOFF, DEFAULT_MIN_BACKOFF, backoff
from ._exceptions import LockTimeoutError, NotFoundError, NotOwnedError
from ._mutex import Mutex
from ._storage import Storage


logger = logging.getLogger(__name__)


class Semaphore:
    """Counting semaphore made of `count` independent mutexes.

    Permit `i` is the object `{name}.{i}` in the bucket. Permits are probed
    in random order, so clients don't all fight for the first ones.

    Held permits are tracked locally as a stack of mutexes, the last
    acquired permit is released first. The instance is not safe to share
    between concurrently running tasks.

    Args:
        bucket:         Bucket name.
        name:           Prefix of the permit object names.
        count:          Total number of permits.
        storage:        Backend holding the permit objects.
        token:          Identity of the holder. Random UUID if not specified.
        min_backoff:    The first delay between attempts in `acquire`, in seconds.
        max_backoff:    The longest delay between attempts in `acquire`, in seconds.
    """
    __slots__ = [
        'bucket',
        'name',
        'count',
        'storage',
        'token',
        'min_backoff',
        'max_backoff',
        'permits',
    ]

    bucket: str
    name: str
    count: int
    storage: Storage
    token: str
    min_backoff: float
    max_backoff: float
    permits: List[Mutex]

    def __init__(
        self,
        bucket: str,
        name: str,
        count: int,
        *,
        storage: Storage,
        token: Optional[str] = None,
        min_backoff: float = DEFAULT_MIN_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
    ) -> None:
        if count < 1:
            raise ValueError(f'count must be positive, got {count}')
        self.bucket = bucket
        self.name = name
        self.count = count
        self.storage = storage
        self.token = token or str(uuid.uuid4())
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff
        self.permits = []

    def _mutex(self, index: int) -> Mutex:
        return Mutex(
            bucket=self.bucket,
            name=f'{self.name}.{index}',
            storage=self.storage,
            token=self.token,
            min_backoff=self.min_backoff,
            max_backoff=self.max_backoff,
        )

    def _mutexes(self) -> List[Mutex]:
        return [self._mutex(index) for index in range(self.count)]

    @property
    def acquired_permits(self) -> int:
        """How many permits this instance believes it holds, without checking.
        """
        return len(self.permits)

    async def try_acquire(self, permits: int = 1, permits_to_check: Optional[int] = None) -> bool:
        """Try to acquire permits without waiting.

        Either all requested permits are acquired or none.

        Args:
            permits: how many permits to acquire.
            permits_to_check: how many random permits to probe. All if None.

        Returns:
            True if the requested number of permits was acquired.
        """
        if permits_to_check is None:
            permits_to_check = self.count
        if not 1 <= permits <= self.count:
            raise ValueError(f'permits must be between 1 and {self.count}, got {permits}')
        if not permits <= permits_to_check <= self.count:
            raise ValueError(
                f'permits_to_check must be between {permits} and {self.count}, '
                f'got {permits_to_check}',
            )

        acquired: List[Mutex] = []
        try:
            for index in random.sample(range(self.count), permits_to_check):
                mutex = self._mutex(index)
                if await mutex.try_lock():
                    acquired.append(mutex)
                    if len(acquired) == permits:
                        break
        except BaseException:
            await self._rollback(acquired)
            raise

        if len(acquired) < permits:
            logger.debug(
                'got %d of %d permits of %s, rolling back',
                len(acquired), permits, self.name,
            )
            await self._rollback(acquired)
            return False

        self.permits.extend(acquired)
        return True

    async def _rollback(self, acquired: List[Mutex]) -> None:
        for mutex in acquired:
            try:
                await mutex.unlock()
            except (NotOwnedError, NotFoundError):
                # force released by someone else in the meantime
                logger.debug('permit %s was lost before rollback', mutex.name)

    async def acquire(
        self,
        permits: int = 1,
        timeout: Optional[float] = None,
        permits_to_check: Optional[int] = None,
    ) -> bool:
        """Acquire permits, waiting for them to be released if needed.

        Args:
            permits: how many permits to acquire.
            timeout: how long to wait, in seconds. Forever if None.
            permits_to_check: how many random permits to probe on each attempt.

        Raises:
            LockTimeoutError
        """
        async def attempt() -> bool:
            return await self.try_acquire(permits=permits, permits_to_check=permits_to_check)

        try:
            return await backoff(
                attempt,
                min_backoff=self.min_backoff,
                max_backoff=self.max_backoff,
                timeout=timeout,
            )
        except LockTimeoutError:
            logger.info('timed out waiting for %d permits of %s', permits, self.name)
            raise LockTimeoutError(
                f'unable to get semaphore permit for {self.name} before timeout',
            ) from None

    async def release(self, permits: int = 1) -> None:
        """Release the given number of the most recently acquired permits.

        Permits released before running out of owned permits stay released.

        Raises:
            NotOwnedError
        """
        for _ in range(permits):
            if not self.permits:
                raise NotOwnedError(f'no permit of {self.name} is owned by this instance')
            await self.permits.pop().unlock()

    async def release_all(self) -> None:
        """Release all permits owned by this instance.
        """
        while self.permits:
            await self.permits.pop().unlock()

    async def force_release_all(self) -> None:
        """Release all permits of the semaphore, no matter who owns them.
        """
        for mutex in self._mutexes():
            try:
                await mutex.force_unlock()
            except NotFoundError:
                pass
        self.permits = []
        logger.info('force released all permits of %s', self.name)

    async def drain_permits(self) -> int:
        """Acquire all permits that are immediately available.

        Returns:
            The number of acquired permits.
        """
        acquired: List[Mutex] = []
        try:
            for mutex in self._mutexes():
                if await mutex.try_lock():
                    acquired.append(mutex)
        except BaseException:
            await self._rollback(acquired)
            raise
        self.permits.extend(acquired)
        return len(acquired)

    async def available_permits(self) -> int:
        """Count permits that are not held by anyone.
        """
        return len([mutex for mutex in self._mutexes() if not await mutex.locked()])

    async def owned_permits(self) -> int:
        """Count permits still owned by this instance.

        Permits released by someone else are forgotten.
        """
        self.permits = [mutex for mutex in self.permits if await mutex.owned()]
        return len(self.permits)

    async def __aenter__(self) -> 'Semaphore':
        await self.acquire()
        return self

    async def __aexit__(self, *args) -> None:
        await self.release()

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}(bucket={self.bucket!r}, '
            f'name={self.name!r}, count={self.count})'
        )
