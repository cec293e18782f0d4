

class MutexError(Exception):
    pass


class AlreadyOwnedError(MutexError):
    pass


class NotOwnedError(MutexError):
    pass


class NotFoundError(MutexError):
    pass


class LockTimeoutError(MutexError):
    pass


class ObjectNotFoundError(MutexError):
    """Raised by a storage backend when the requested object does not exist.
    """
