"""Cache tiers, in lookup order: disk, database/Redis, object storage."""

from .base import CacheTier, InMemoryCacheTier, VectorMatch, cosine_distance
from .database import DatabaseCacheTier
from .disk import DiskCacheTier
from .object_storage import ObjectStorage, ObjectStorageTier, S3ObjectStorage
from .redis_tier import RedisCacheTier

__all__ = [
    "CacheTier",
    "DatabaseCacheTier",
    "DiskCacheTier",
    "InMemoryCacheTier",
    "ObjectStorage",
    "ObjectStorageTier",
    "RedisCacheTier",
    "S3ObjectStorage",
    "VectorMatch",
    "cosine_distance",
]
