import asyncio
from typing import Dict, Tuple

from ._exceptions import ObjectNotFoundError


class Memory:
    """Storage backend keeping objects in a dict.

    Locks built on it coordinate tasks of a single process only.
    Helpful for testing code that uses locks.
    """
    __slots__ = ['objects', '_lock']

    objects: Dict[Tuple[str, str], bytes]

    def __init__(self) -> None:
        self.objects = {}
        self._lock = asyncio.Lock()

    async def create(self, bucket: str, name: str, content: bytes) -> bool:
        async with self._lock:
            key = (bucket, name)
            if key in self.objects:
                return False
            self.objects[key] = bytes(content)
            return True

    async def exists(self, bucket: str, name: str) -> bool:
        return (bucket, name) in self.objects

    async def size(self, bucket: str, name: str) -> int:
        return len(await self.read(bucket, name))

    async def read(self, bucket: str, name: str) -> bytes:
        try:
            return self.objects[(bucket, name)]
        except KeyError:
            raise ObjectNotFoundError(f'{bucket}/{name}') from None

    async def delete(self, bucket: str, name: str) -> bool:
        async with self._lock:
            return self.objects.pop((bucket, name), None) is not None
