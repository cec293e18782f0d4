import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from ._backoff import DEFAULT_MAX_BACKOFF, DEFAULT_MIN_BACKOFF, backoff
from ._exceptions import (
    AlreadyOwnedError, LockTimeoutError, NotFoundError, NotOwnedError,
    ObjectNotFoundError,
)
from ._storage import Storage


logger = logging.getLogger(__name__)


class Mutex:
    """Mutex backed by a single object in a bucket.

    The mutex is locked while the object exists. The object content is
    the token of the holder, so any instance sharing the same token
    is considered the owner of the lock.

    The instance keeps no state besides its configuration,
    so creating a new one for the same object is cheap.

    Args:
        bucket:         Bucket name.
        name:           Lock name, used as the object name in the bucket.
        storage:        Backend holding the lock objects.
        token:          Identity of the holder. Random UUID if not specified.
        min_backoff:    The first delay between attempts in `lock`, in seconds.
        max_backoff:    The longest delay between attempts in `lock`, in seconds.
    """
    __slots__ = [
        'bucket',
        'name',
        'storage',
        'token',
        'min_backoff',
        'max_backoff',
    ]

    bucket: str
    name: str
    storage: Storage
    token: str
    min_backoff: float
    max_backoff: float

    def __init__(
        self,
        bucket: str,
        name: str,
        *,
        storage: Storage,
        token: Optional[str] = None,
        min_backoff: float = DEFAULT_MIN_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
    ) -> None:
        self.bucket = bucket
        self.name = name
        self.storage = storage
        self.token = token or str(uuid.uuid4())
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff

    @property
    def _content(self) -> bytes:
        return self.token.encode('utf8')

    async def try_lock(self) -> bool:
        """Try to acquire (lock) the mutex without waiting.

        Returns:
            True if the lock was acquired,
            False if it is already held by anyone (including this instance).

        Raises:
            Any error of the storage except for the failed precondition.
        """
        created = await self.storage.create(self.bucket, self.name, self._content)
        if created:
            logger.debug('acquired %s/%s', self.bucket, self.name)
        return created

    async def lock(self, timeout: Optional[float] = None) -> bool:
        """Acquire (lock) the mutex, waiting for it to be released if needed.

        Args:
            timeout: how long to wait for the lock, in seconds. Forever if None.

        Raises:
            AlreadyOwnedError
            LockTimeoutError
        """
        if await self.owned():
            raise AlreadyOwnedError(f'mutex {self.name} is already owned by this instance')
        return await self._wait(timeout)

    async def _wait(self, timeout: Optional[float]) -> bool:
        try:
            return await backoff(
                self.try_lock,
                min_backoff=self.min_backoff,
                max_backoff=self.max_backoff,
                timeout=timeout,
            )
        except LockTimeoutError:
            logger.info('timed out waiting for %s/%s', self.bucket, self.name)
            raise LockTimeoutError(
                f'unable to get mutex {self.name} before timeout',
            ) from None

    async def locked(self) -> bool:
        """Check if the mutex is acquired (locked) by anyone.
        """
        return await self.storage.exists(self.bucket, self.name)

    async def owned(self) -> bool:
        """Check if the mutex is acquired (locked) by this token.
        """
        if not await self.locked():
            return False
        content = self._content
        try:
            if await self.storage.size(self.bucket, self.name) != len(content):
                return False
            return await self.storage.read(self.bucket, self.name) == content
        except ObjectNotFoundError:
            # released right after the check
            return False

    async def unlock(self) -> None:
        """Release (unlock) the mutex owned by this token.

        The ownership check and the deletion are separate requests,
        so a lock force-released and re-acquired by someone else
        in between will be deleted as well.

        Raises:
            NotOwnedError
            NotFoundError
        """
        if not await self.owned():
            raise NotOwnedError(f'mutex {self.name} is not owned by this instance')
        if not await self.storage.delete(self.bucket, self.name):
            raise NotFoundError(f'mutex {self.name} not found')
        logger.debug('released %s/%s', self.bucket, self.name)

    async def force_unlock(self) -> None:
        """Release (unlock) the mutex even if it is owned by someone else.

        Raises:
            NotFoundError
        """
        if not await self.storage.delete(self.bucket, self.name):
            raise NotFoundError(f'mutex {self.name} not found')
        logger.info('force released %s/%s', self.bucket, self.name)

    @asynccontextmanager
    async def synchronize(self, timeout: Optional[float] = None) -> AsyncIterator['Mutex']:
        """Hold the lock while inside the context.

        Raises:
            AlreadyOwnedError
            LockTimeoutError
        """
        if await self.owned():
            raise AlreadyOwnedError(f'mutex {self.name} is already owned by this instance')
        await self._wait(timeout)
        try:
            yield self
        finally:
            await self.unlock()

    async def __aenter__(self) -> 'Mutex':
        await self.lock()
        return self

    async def __aexit__(self, *args) -> None:
        await self.unlock()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mutex):
            return NotImplemented
        return (
            self.bucket == other.bucket
            and self.name == other.name
            and self.token == other.token
        )

    def __hash__(self) -> int:
        return hash((self.bucket, self.name, self.token))

    def __repr__(self) -> str:
        return f'{type(self).__name__}(bucket={self.bucket!r}, name={self.name!r})'
