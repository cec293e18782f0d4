"""Mutex and semaphore for distributed systems, built on object storage.
"""
from ._backoff import DEFAULT_MAX_BACKOFF, DEFAULT_MIN_BACKOFF, backoff
from ._exceptions import (
    AlreadyOwnedError,
    LockTimeoutError,
    MutexError,
    NotFoundError,
    NotOwnedError,
    ObjectNotFoundError,
)
from ._gcs import GCS
from ._memory import Memory
from ._mutex import Mutex
from ._semaphore import Semaphore
from ._storage import Storage


__version__ = '2.0.0'
__all__ = [
    'AlreadyOwnedError',
    'backoff',
    'DEFAULT_MAX_BACKOFF',
    'DEFAULT_MIN_BACKOFF',
    'GCS',
    'LockTimeoutError',
    'Memory',
    'Mutex',
    'MutexError',
    'NotFoundError',
    'NotOwnedError',
    'ObjectNotFoundError',
    'Semaphore',
    'Storage',
]
