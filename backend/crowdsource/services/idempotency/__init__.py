from .guard import (
    DedupStore,
    InMemoryDedupStore,
    IdempotencyGuard,
    normalize_content,
    location_content,
)

__all__ = [
    "DedupStore",
    "InMemoryDedupStore",
    "IdempotencyGuard",
    "normalize_content",
    "location_content",
]
