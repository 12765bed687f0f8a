"""Test fixtures — in-memory SQLite database, an in-process fake B2 API and the FastAPI test client."""

import base64
import hashlib
import itertools
import json
from collections import Counter
from unittest.mock import AsyncMock
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from b2shelf import services
from b2shelf.config import Account
from b2shelf.database import get_db
from b2shelf.main import create_app
from b2shelf.models.base import Base
from b2shelf.services.b2_client import B2Client
from b2shelf.services.file_service import FileService
from b2shelf.services.ingestion import IngestionPipeline
from b2shelf.services.listing_cache import ListingCache
from b2shelf.services.media_probe import EnrichmentError, MediaProbe
from b2shelf.services.metadata_index import MetadataIndex
from b2shelf.services.object_gateway import ObjectGateway
from b2shelf.services.token_cache import TokenCache

API_URL = "https://api.fake-b2.test"
DOWNLOAD_URL = "https://f000.fake-b2.test"
UPLOAD_HOST = "https://pod.fake-b2.test"


class FakeB2:
    """Just enough of the B2 v2 API to exercise the gateway.

    Objects live in a dict keyed by file id. ``calls`` counts every
    operation by name; ``fail`` forces the next call of an operation to
    return the given status; ``expire_tokens`` makes every issued token
    answer 401 until the client re-authorizes.
    """

    def __init__(self, credentials: dict[str, str]):
        self.credentials = credentials
        self.objects: dict[str, dict] = {}
        self.calls: Counter = Counter()
        self.fail: dict[str, int] = {}
        self.buckets: dict[str, dict] = {}
        self._valid_tokens: set[str] = set()
        self._upload_tokens: set[str] = set()
        self._seq = itertools.count(1)
        self.clock = 1_700_000_000_000

    # -- helpers for tests --------------------------------------------

    def expire_tokens(self) -> None:
        self._valid_tokens.clear()

    def keys(self) -> list[str]:
        return sorted(o["fileName"] for o in self.objects.values())

    def put(self, file_name: str, data: bytes = b"x", content_type: str = "image/png",
            timestamp: int | None = None) -> str:
        file_id = f"id-{next(self._seq)}"
        self.clock += 1000
        self.objects[file_id] = {
            "fileId": file_id,
            "fileName": file_name,
            "contentLength": len(data),
            "contentType": content_type,
            "contentSha1": hashlib.sha1(data).hexdigest(),
            "uploadTimestamp": timestamp if timestamp is not None else self.clock,
            "data": data,
        }
        return file_id

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # -- request handling ---------------------------------------------

    @staticmethod
    def _error(status: int, code: str, message: str = "") -> httpx.Response:
        return httpx.Response(status, json={"status": status, "code": code, "message": message or code})

    def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(UPLOAD_HOST):
            op = "upload_file"
        else:
            op = request.url.path.rsplit("/", 1)[-1]
        self.calls[op] += 1

        status = self.fail.pop(op, None)
        if status is not None:
            return self._error(status, "forced_failure", f"{op} forced to fail")

        if op == "b2_authorize_account":
            return self._authorize(request)
        if op == "upload_file":
            return self._upload(request)

        if request.headers.get("Authorization") not in self._valid_tokens:
            return self._error(401, "expired_auth_token", "Authorization token has expired")

        body = json.loads(request.content or b"{}")
        handler = getattr(self, f"_{op}", None)
        if handler is None:
            return self._error(400, "bad_request", f"unsupported operation {op}")
        return handler(body)

    def _authorize(self, request: httpx.Request) -> httpx.Response:
        header = request.headers.get("Authorization", "")
        key_id, _, app_key = base64.b64decode(header.removeprefix("Basic ")).decode().partition(":")
        if self.credentials.get(key_id) != app_key:
            return self._error(401, "bad_auth_token", "Invalid application key")
        token = f"tok-{next(self._seq)}"
        self._valid_tokens.add(token)
        return httpx.Response(200, json={
            "accountId": f"acct-{key_id}",
            "apiUrl": API_URL,
            "downloadUrl": DOWNLOAD_URL,
            "authorizationToken": token,
        })

    def _b2_get_upload_url(self, body: dict) -> httpx.Response:
        token = f"up-{next(self._seq)}"
        self._upload_tokens.add(token)
        return httpx.Response(200, json={
            "bucketId": body["bucketId"],
            "uploadUrl": f"{UPLOAD_HOST}/b2api/v2/b2_upload_file/{body['bucketId']}",
            "authorizationToken": token,
        })

    def _upload(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("Authorization") not in self._upload_tokens:
            return self._error(401, "bad_auth_token", "Invalid upload token")
        data = request.content
        if hashlib.sha1(data).hexdigest() != request.headers["X-Bz-Content-Sha1"]:
            return self._error(400, "bad_request", "Checksum did not match data received")
        name = unquote(request.headers["X-Bz-File-Name"])
        file_id = self.put(name, data, request.headers["Content-Type"])
        obj = {k: v for k, v in self.objects[file_id].items() if k != "data"}
        return httpx.Response(200, json=obj)

    def _b2_list_file_names(self, body: dict) -> httpx.Response:
        prefix = body.get("prefix", "")
        start = body.get("startFileName") or ""
        limit = body.get("maxFileCount", 1000)
        names = sorted(
            (o for o in self.objects.values() if o["fileName"].startswith(prefix) and o["fileName"] >= start),
            key=lambda o: o["fileName"],
        )
        page = names[:limit]
        next_name = names[limit]["fileName"] if len(names) > limit else None
        return httpx.Response(200, json={
            "files": [{k: v for k, v in o.items() if k != "data"} for o in page],
            "nextFileName": next_name,
        })

    def _b2_delete_file_version(self, body: dict) -> httpx.Response:
        obj = self.objects.get(body["fileId"])
        if obj is None or obj["fileName"] != body["fileName"]:
            return self._error(400, "file_not_present", f"File not present: {body['fileName']}")
        del self.objects[body["fileId"]]
        return httpx.Response(200, json={"fileId": body["fileId"], "fileName": body["fileName"]})

    def _b2_copy_file(self, body: dict) -> httpx.Response:
        source = self.objects.get(body["sourceFileId"])
        if source is None:
            return self._error(400, "file_not_present", "Source file not present")
        file_id = self.put(body["fileName"], source["data"], source["contentType"])
        return httpx.Response(200, json={"fileId": file_id, "fileName": body["fileName"]})

    def _b2_get_download_authorization(self, body: dict) -> httpx.Response:
        return httpx.Response(200, json={
            "bucketId": body["bucketId"],
            "fileNamePrefix": body["fileNamePrefix"],
            "authorizationToken": f"dl-{next(self._seq)}",
        })

    def _b2_list_buckets(self, body: dict) -> httpx.Response:
        bucket = self.buckets.get(body["bucketId"], {
            "bucketId": body["bucketId"],
            "bucketName": f"bucket-{body['bucketId']}",
            "bucketType": "allPrivate",
        })
        return httpx.Response(200, json={"buckets": [bucket]})


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MillisClock:
    """Strictly increasing millisecond timestamps."""

    def __init__(self, start: int = 1_700_000_000_000):
        self._next = itertools.count(start, 7)

    def __call__(self) -> int:
        return next(self._next)


@pytest.fixture
def accounts():
    return {
        "account1": Account(key="account1", bucket_id="bkt1", bucket_name="shelf-one",
                            key_id="key1", application_key="secret1"),
        "account2": Account(key="account2", bucket_id="bkt2", bucket_name="shelf-two",
                            key_id="key2", application_key="secret2"),
        "account3": Account(key="account3"),
    }


@pytest.fixture
def fake_b2():
    return FakeB2({"key1": "secret1", "key2": "secret2"})


@pytest_asyncio.fixture
async def http(fake_b2):
    async with httpx.AsyncClient(transport=fake_b2.transport()) as client:
        yield client


@pytest.fixture
def b2_client(http):
    return B2Client(http, api_url=API_URL, api_version="v2", upload_author="tests")


@pytest.fixture
def token_cache(b2_client, accounts):
    return TokenCache(b2_client, accounts)


@pytest.fixture
def gateway(b2_client, token_cache):
    return ObjectGateway(b2_client, token_cache)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def listing(gateway, clock):
    return ListingCache(gateway, ttl=300, clock=clock)


@pytest.fixture
def probe():
    """A MediaProbe whose ffmpeg step fails like a corrupt video would."""
    fake = AsyncMock(spec=MediaProbe)
    fake.enrich.return_value = EnrichmentError(stage="probe", message="Invalid data found when processing input")
    return fake


@pytest.fixture
def pipeline(gateway, listing, probe):
    return IngestionPipeline(gateway, listing, probe, clock=MillisClock())


@pytest.fixture
def file_service(gateway, listing):
    return FileService(gateway, listing, clock=MillisClock(1_800_000_000_000))


@pytest_asyncio.fixture
async def db_session():
    """Provide an async in-memory SQLite session for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def index(db_session):
    return MetadataIndex(db_session)


@pytest_asyncio.fixture
async def client(db_session, token_cache, gateway, listing, pipeline, file_service, tmp_path, monkeypatch):
    """Provide an async test client with the DB and services overridden."""
    from b2shelf.config import settings

    monkeypatch.setattr(settings, "temp_dir", str(tmp_path))
    app = create_app()

    async def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[services.get_token_cache] = lambda: token_cache
    app.dependency_overrides[services.get_object_gateway] = lambda: gateway
    app.dependency_overrides[services.get_listing_cache] = lambda: listing
    app.dependency_overrides[services.get_ingestion_pipeline] = lambda: pipeline
    app.dependency_overrides[services.get_file_service] = lambda: file_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
