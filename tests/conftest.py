import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

import bucketlock


FORBIDDEN_BUCKET = 'forbidden'
RETENTION_BUCKET = 'retention'


class FakeGCS:
    """The part of GCS JSON API used by locks, served by aiohttp.
    """

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], bytes] = {}

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self.forbid])
        app.router.add_post('/upload/storage/v1/b/{bucket}/o', self.upload)
        app.router.add_get('/storage/v1/b/{bucket}/o/{name:.+}', self.get)
        app.router.add_delete('/storage/v1/b/{bucket}/o/{name:.+}', self.delete)
        return app

    @web.middleware
    async def forbid(self, request: web.Request, handler):
        if request.match_info.get('bucket') == FORBIDDEN_BUCKET:
            return self.error(403, 'forbidden')
        if request.match_info.get('bucket') == RETENTION_BUCKET and request.method == 'POST':
            return self.error(412, 'retentionPolicyNotMet')
        return await handler(request)

    @staticmethod
    def error(status: int, reason: str) -> web.Response:
        body = {'error': {'code': status, 'errors': [{'reason': reason}]}}
        return web.json_response(body, status=status)

    @staticmethod
    def metadata(bucket: str, name: str, content: bytes) -> dict:
        return {'bucket': bucket, 'name': name, 'size': str(len(content))}

    async def upload(self, request: web.Request) -> web.Response:
        assert request.query['uploadType'] == 'multipart'
        boundary = request.headers['Content-Type'].split('boundary=')[1]
        body = await request.read()
        parts = body.split(b'--' + boundary.encode())
        meta, content = [part.split(b'\r\n\r\n', 1)[1][:-2] for part in parts[1:3]]
        bucket = request.match_info['bucket']
        name = json.loads(meta)['name']
        key = (bucket, name)
        if request.query.get('ifGenerationMatch') == '0' and key in self.objects:
            return self.error(412, 'conditionNotMet')
        self.objects[key] = content
        return web.json_response(self.metadata(bucket, name, content))

    async def get(self, request: web.Request) -> web.Response:
        bucket = request.match_info['bucket']
        name = request.match_info['name']
        content = self.objects.get((bucket, name))
        if content is None:
            return self.error(404, 'notFound')
        if request.query.get('alt') == 'media':
            return web.Response(body=content)
        return web.json_response(self.metadata(bucket, name, content))

    async def delete(self, request: web.Request) -> web.Response:
        key = (request.match_info['bucket'], request.match_info['name'])
        if self.objects.pop(key, None) is None:
            return self.error(404, 'notFound')
        return web.Response(status=204)


@pytest.fixture
def fake_gcs() -> FakeGCS:
    return FakeGCS()


@asynccontextmanager
async def serve(fake: FakeGCS) -> AsyncIterator[bucketlock.GCS]:
    server = TestServer(fake.app())
    await server.start_server()
    try:
        async with bucketlock.GCS(api_url=str(server.make_url('/'))) as storage:
            yield storage
    finally:
        await server.close()


@pytest.fixture
async def gcs(fake_gcs: FakeGCS):
    async with serve(fake_gcs) as storage:
        yield storage


@pytest.fixture(params=['memory', 'gcs'])
async def storage(request, fake_gcs: FakeGCS):
    if request.param == 'memory':
        yield bucketlock.Memory()
    else:
        async with serve(fake_gcs) as gcs:
            yield gcs


@pytest.fixture
def bucket() -> str:
    return 'bucket'


@pytest.fixture
def forbidden_bucket() -> str:
    return FORBIDDEN_BUCKET


@pytest.fixture
def retention_bucket() -> str:
    return RETENTION_BUCKET
