import json
import logging
import os
from http import HTTPStatus
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp
from gcloud.aio.auth import Token

from ._exceptions import ObjectNotFoundError


logger = logging.getLogger(__name__)

DEFAULT_URL = 'https://www.googleapis.com'
EMULATOR_ENV = 'STORAGE_EMULATOR_HOST'
SCOPES = [
    'https://www.googleapis.com/auth/devstorage.read_write',
]
CONDITION_NOT_MET = 'conditionNotMet'
BOUNDARY = 'cf58b63b6ce6f37881e9740f24be22d7'


class GCS:
    """Google Cloud Storage backend talking to the JSON API.

    Must be created inside a running event loop because it opens
    an aiohttp session.

    Args:
        api_url:    URL of GCS API, helpful for testing with emulator.
                    Defaults to `STORAGE_EMULATOR_HOST` if it is set.
        session:    aiohttp session to use. Closed when leaving the context.
        token:      gcloud-aio-auth token. Not used with emulator.
        timeout:    Total timeout of a single request, in seconds.
    """
    __slots__ = [
        'api_url',
        'session',
        'token',
        'emulator',
    ]

    api_url: str
    session: aiohttp.ClientSession
    token: Optional[Token]
    emulator: bool

    def __init__(
        self,
        api_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        token: Optional[Token] = None,
        timeout: float = 10,
    ) -> None:
        if api_url is None:
            api_url = os.environ.get(EMULATOR_ENV)
            if api_url and not api_url.startswith(('http://', 'https://')):
                api_url = f'http://{api_url}'
        self.emulator = bool(api_url)
        self.api_url = (api_url or DEFAULT_URL).rstrip('/')

        if session is None:
            session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=not self.emulator),
                timeout=aiohttp.ClientTimeout(total=timeout),
            )
        self.session = session
        if token is None and not self.emulator:
            token = Token(scopes=SCOPES, session=session)  # type: ignore[arg-type]
        self.token = token

    async def _headers(self) -> Dict[str, str]:
        if self.token is None:
            return {}
        token = await self.token.get()
        return {
            'Authorization': f'Bearer {token}',
        }

    def _object_url(self, bucket: str, name: str) -> str:
        return f'{self.api_url}/storage/v1/b/{bucket}/o/{quote(name, safe="")}'

    async def create(self, bucket: str, name: str, content: bytes) -> bool:
        """Upload the object only if it does not exist yet.

        Raises:
            ClientResponseError
        """
        metadata = dict(name=name)
        body = b'\r\n'.join([
            f'--{BOUNDARY}'.encode(),
            b'Content-Type: application/json; charset=UTF-8',
            b'',
            json.dumps(metadata).encode(),
            f'--{BOUNDARY}'.encode(),
            b'Content-Type: text/plain',
            b'',
            content,
            f'--{BOUNDARY}--'.encode(),
            b'',
        ])
        headers = await self._headers()
        headers.update({
            'Accept': 'application/json',
            'Content-Length': str(len(body)),
            'Content-Type': f'multipart/related; boundary={BOUNDARY}',
        })
        params = dict(uploadType='multipart', ifGenerationMatch='0')
        async with self.session.post(
            url=f'{self.api_url}/upload/storage/v1/b/{bucket}/o',
            data=body,
            params=params,
            headers=headers,
        ) as resp:
            if resp.status == HTTPStatus.PRECONDITION_FAILED:
                if CONDITION_NOT_MET in await self._error_reasons(resp):
                    logger.debug('gs://%s/%s already exists', bucket, name)
                    return False
            resp.raise_for_status()
        return True

    @staticmethod
    async def _error_reasons(resp: aiohttp.ClientResponse) -> List[str]:
        try:
            content = await resp.json(content_type=None)
        except ValueError:
            return []
        if not isinstance(content, dict):
            return []
        errors = content.get('error', {}).get('errors', [])
        return [error.get('reason') for error in errors]

    async def _metadata(self, bucket: str, name: str) -> Optional[Dict[str, Any]]:
        async with self.session.get(
            url=self._object_url(bucket, name),
            headers=await self._headers(),
        ) as resp:
            if resp.status == HTTPStatus.NOT_FOUND:
                return None
            resp.raise_for_status()
            return await resp.json()

    async def exists(self, bucket: str, name: str) -> bool:
        """
        Raises:
            ClientResponseError
        """
        return await self._metadata(bucket, name) is not None

    async def size(self, bucket: str, name: str) -> int:
        """
        Raises:
            ObjectNotFoundError
            ClientResponseError
        """
        metadata = await self._metadata(bucket, name)
        if metadata is None:
            raise ObjectNotFoundError(f'gs://{bucket}/{name}')
        return int(metadata['size'])

    async def read(self, bucket: str, name: str) -> bytes:
        """
        Raises:
            ObjectNotFoundError
            ClientResponseError
        """
        async with self.session.get(
            url=self._object_url(bucket, name),
            params=dict(alt='media'),
            headers=await self._headers(),
        ) as resp:
            if resp.status == HTTPStatus.NOT_FOUND:
                raise ObjectNotFoundError(f'gs://{bucket}/{name}')
            resp.raise_for_status()
            return await resp.read()

    async def delete(self, bucket: str, name: str) -> bool:
        """
        Raises:
            ClientResponseError
        """
        async with self.session.delete(
            url=self._object_url(bucket, name),
            headers=await self._headers(),
        ) as resp:
            if resp.status == HTTPStatus.NOT_FOUND:
                return False
            resp.raise_for_status()
        return True

    async def close(self) -> None:
        await self.session.close()

    async def __aenter__(self) -> 'GCS':
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
