from typing import Protocol


class Storage(Protocol):
    """Object storage capabilities required to build locks.

    The only operation that must be atomic across all clients is `create`.
    Errors other than the ones described below (network, permissions, quota)
    must propagate as they are.
    """

    async def create(self, bucket: str, name: str, content: bytes) -> bool:
        """Create the object if and only if it does not exist yet.

        Returns:
            False if the object already exists (precondition failed).
        """
        ...

    async def exists(self, bucket: str, name: str) -> bool:
        ...

    async def size(self, bucket: str, name: str) -> int:
        """
        Raises:
            ObjectNotFoundError
        """
        ...

    async def read(self, bucket: str, name: str) -> bytes:
        """
        Raises:
            ObjectNotFoundError
        """
        ...

    async def delete(self, bucket: str, name: str) -> bool:
        """Delete the object.

        Returns:
            False if there was no such object.
        """
        ...
