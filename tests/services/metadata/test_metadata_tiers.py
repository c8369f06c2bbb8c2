import asyncio
import io
import json
from pathlib import Path

import pytest
from botocore.exceptions import ClientError
from redis.exceptions import ConnectionError as RedisConnectionError

from bookhub.database import create_engine_for_url, create_schema, get_session_factory
from bookhub.services.metadata.errors import TierTransientFailure
from bookhub.services.metadata.keys import safe_key_name
from bookhub.services.metadata.tiers import (
    DatabaseCacheTier,
    DiskCacheTier,
    InMemoryCacheTier,
    ObjectStorageTier,
    RedisCacheTier,
    S3ObjectStorage,
    cosine_distance,
)
from bookhub.services.metadata.types import CacheEntry

pytestmark = pytest.mark.metadata

PAYLOAD = {"id": "book-1", "title": "Dune"}


class FakeRedis:
    def __init__(self, *, fail: bool = False) -> None:
        self.values = {}
        self.expiries = {}
        self.fail = fail
        self.closed = False

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("connection refused")
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.values[key] = value
        self.expiries[key] = ex

    async def delete(self, key):
        if self.fail:
            raise RedisConnectionError("connection refused")
        return 1 if self.values.pop(key, None) is not None else 0

    async def aclose(self):
        self.closed = True


class FakeS3Client:
    def __init__(self) -> None:
        self.objects = {}

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = Body

    def copy_object(self, Bucket, Key, CopySource):
        self.objects[Key] = self.objects[CopySource["Key"]]

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)


class TestInMemoryTier:
    def test_round_trip_and_access_statistics(self) -> None:
        tier = InMemoryCacheTier()
        asyncio.run(tier.put("book:book-1", CacheEntry.fresh(PAYLOAD)))

        asyncio.run(tier.get("book:book-1"))
        entry = asyncio.run(tier.get("book:book-1"))

        assert entry.payload == PAYLOAD
        assert entry.access_count == 2
        assert asyncio.run(tier.get("book:missing")) is None

    def test_rewrite_keeps_an_existing_embedding(self) -> None:
        tier = InMemoryCacheTier()
        asyncio.run(tier.put("book:book-1", CacheEntry.fresh(PAYLOAD, embedding=[1.0, 0.0])))

        asyncio.run(tier.put("book:book-1", CacheEntry.fresh({"id": "book-1", "title": "Dune!"})))

        entry = asyncio.run(tier.get("book:book-1"))
        assert entry.payload["title"] == "Dune!"
        assert entry.embedding == [1.0, 0.0]

    def test_knn_skips_placeholders_and_excluded_keys(self) -> None:
        tier = InMemoryCacheTier()
        asyncio.run(tier.put("book:self", CacheEntry.fresh(PAYLOAD, embedding=[1.0, 0.0])))
        asyncio.run(tier.put("book:near", CacheEntry.fresh(PAYLOAD, embedding=[0.9, 0.1])))
        asyncio.run(tier.put("book:far", CacheEntry.fresh(PAYLOAD, embedding=[0.0, 1.0])))
        asyncio.run(
            tier.put("book:fake", CacheEntry.fresh(PAYLOAD, embedding=[1.0, 0.0], embedding_is_placeholder=True))
        )

        matches = asyncio.run(tier.knn([1.0, 0.0], 2, exclude_keys=["book:self"]))

        assert [match.key for match in matches] == ["book:near", "book:far"]

    def test_cosine_distance_edge_cases(self) -> None:
        assert cosine_distance([1.0, 0.0], [1.0, 0.0]) == pytest.approx(0.0)
        assert cosine_distance([1.0], [1.0, 0.0]) == 2.0
        assert cosine_distance([0.0, 0.0], [1.0, 0.0]) == 2.0


class TestDiskTier:
    def test_round_trip(self, tmp_path: Path) -> None:
        tier = DiskCacheTier(tmp_path)

        asyncio.run(tier.put("search:any:dune#page=0", CacheEntry.fresh([PAYLOAD])))

        entry = asyncio.run(tier.get("search:any:dune#page=0"))
        assert entry.payload == [PAYLOAD]
        assert asyncio.run(tier.get("search:any:other#page=0")) is None

    def test_expired_entries_are_misses(self, tmp_path: Path) -> None:
        tier = DiskCacheTier(tmp_path, ttl_hours=1)
        asyncio.run(tier.put("book:book-1", CacheEntry.fresh(PAYLOAD)))
        path = tmp_path / f"{safe_key_name('book:book-1')}.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        data["cached_at"] = "2000-01-01T00:00:00+00:00"
        path.write_text(json.dumps(data), encoding="utf-8")

        assert asyncio.run(tier.get("book:book-1")) is None
        assert not path.exists()

    def test_malformed_file_raises_a_transient_failure(self, tmp_path: Path) -> None:
        tier = DiskCacheTier(tmp_path)
        path = tmp_path / f"{safe_key_name('book:book-1')}.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(TierTransientFailure):
            asyncio.run(tier.get("book:book-1"))
        assert not path.exists()

    def test_maintenance_helpers(self, tmp_path: Path) -> None:
        tier = DiskCacheTier(tmp_path)
        asyncio.run(tier.put("book:a", CacheEntry.fresh(PAYLOAD)))
        asyncio.run(tier.put("book:b", CacheEntry.fresh(PAYLOAD)))
        (tmp_path / "broken.json").write_text("nope", encoding="utf-8")

        assert tier.cleanup_expired() == 1
        assert tier.delete("book:a") is True
        assert tier.delete("book:a") is False
        assert tier.clear() == 1


class TestDatabaseTier:
    @pytest.fixture
    def tier(self) -> DatabaseCacheTier:
        engine = create_engine_for_url("sqlite://")
        create_schema(engine)
        yield DatabaseCacheTier(get_session_factory(engine))
        engine.dispose()

    def test_round_trip_tracks_access(self, tier: DatabaseCacheTier) -> None:
        asyncio.run(tier.put("book:book-1", CacheEntry.fresh(PAYLOAD)))

        asyncio.run(tier.get("book:book-1"))
        entry = asyncio.run(tier.get("book:book-1"))

        assert entry.payload == PAYLOAD
        assert entry.access_count == 2
        assert entry.embedding is None
        assert asyncio.run(tier.get("book:missing")) is None

    def test_embedding_survives_payload_rewrites(self, tier: DatabaseCacheTier) -> None:
        asyncio.run(tier.put("book:book-1", CacheEntry.fresh(PAYLOAD, embedding=[0.5, 0.5])))
        asyncio.run(tier.put("book:book-1", CacheEntry.fresh({"id": "book-1", "title": "Dune!"})))

        entry = asyncio.run(tier.get("book:book-1"))

        assert entry.payload["title"] == "Dune!"
        assert entry.embedding == [0.5, 0.5]

    def test_knn_ignores_placeholder_rows(self, tier: DatabaseCacheTier) -> None:
        asyncio.run(tier.put("book:near", CacheEntry.fresh(PAYLOAD, embedding=[1.0, 0.1])))
        asyncio.run(tier.put("book:far", CacheEntry.fresh(PAYLOAD, embedding=[-1.0, 0.0])))
        asyncio.run(
            tier.put("book:fake", CacheEntry.fresh(PAYLOAD, embedding=[1.0, 0.0], embedding_is_placeholder=True))
        )
        asyncio.run(tier.put("book:plain", CacheEntry.fresh(PAYLOAD)))

        matches = asyncio.run(tier.knn([1.0, 0.0], 5))

        assert [match.key for match in matches] == ["book:near", "book:far"]


class TestRedisTier:
    def test_round_trip_with_namespace_and_ttl(self) -> None:
        client = FakeRedis()
        tier = RedisCacheTier(client, namespace="test", ttl_seconds=60)

        asyncio.run(tier.put("book:book-1", CacheEntry.fresh(PAYLOAD)))

        assert "test:book:book-1" in client.values
        assert client.expiries["test:book:book-1"] == 60
        assert asyncio.run(tier.get("book:book-1")).payload == PAYLOAD
        assert asyncio.run(tier.get("book:missing")) is None
        assert asyncio.run(tier.delete("book:book-1")) is True

    def test_connection_errors_are_transient(self) -> None:
        tier = RedisCacheTier(FakeRedis(fail=True))

        with pytest.raises(TierTransientFailure):
            asyncio.run(tier.get("book:book-1"))
        with pytest.raises(TierTransientFailure):
            asyncio.run(tier.put("book:book-1", CacheEntry.fresh(PAYLOAD)))
        with pytest.raises(TierTransientFailure):
            asyncio.run(tier.delete("book:book-1"))

    def test_malformed_values_are_transient(self) -> None:
        client = FakeRedis()
        client.values["bookhub:cache:book:book-1"] = json.dumps({"no": "payload"})

        with pytest.raises(TierTransientFailure):
            asyncio.run(RedisCacheTier(client).get("book:book-1"))

    def test_close_releases_the_client(self) -> None:
        client = FakeRedis()

        asyncio.run(RedisCacheTier(client).close())

        assert client.closed


class TestObjectStorageTier:
    def test_round_trip_under_the_prefix(self) -> None:
        client = FakeS3Client()
        tier = ObjectStorageTier(S3ObjectStorage("books", client=client), prefix="books/v1/")

        asyncio.run(tier.put("book:book-1", CacheEntry.fresh(PAYLOAD)))

        [path] = client.objects
        assert path.startswith("books/v1/book/")
        assert asyncio.run(tier.get("book:book-1")).payload == PAYLOAD

    def test_missing_objects_are_misses(self) -> None:
        tier = ObjectStorageTier(S3ObjectStorage("books", client=FakeS3Client()))

        assert asyncio.run(tier.get("book:missing")) is None

    def test_move_rehomes_the_object(self) -> None:
        client = FakeS3Client()
        tier = ObjectStorageTier(S3ObjectStorage("books", client=client))
        asyncio.run(tier.put("book:old", CacheEntry.fresh(PAYLOAD)))

        asyncio.run(tier.move("book:old", "book:new"))

        assert asyncio.run(tier.get("book:old")) is None
        assert asyncio.run(tier.get("book:new")).payload == PAYLOAD

    def test_other_client_errors_are_transient(self) -> None:
        class DeniedClient(FakeS3Client):
            def get_object(self, Bucket, Key):
                raise ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "GetObject")

        tier = ObjectStorageTier(S3ObjectStorage("books", client=DeniedClient()))

        with pytest.raises(TierTransientFailure):
            asyncio.run(tier.get("book:book-1"))
