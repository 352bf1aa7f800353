"""
Paper Claim Document Store.

Rendering and archiving paper claim forms is a downstream concern; the
dispatcher only needs somewhere to put the form payload and a reference to
hand back. Production deployments plug an object store in behind the same
interface.
"""

import json
from typing import Any, Protocol


class DocumentStore(Protocol):
    """Storage for generated claim documents."""

    async def put_document(self, bucket: str, path: str, content: dict[str, Any]) -> str:
        """Store a document and return its reference."""
        ...


class InMemoryDocumentStore:
    """
    In-memory document storage for development and testing.

    References use the form memory://{bucket}/{path}.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, bytes]] = {}

    async def put_document(self, bucket: str, path: str, content: dict[str, Any]) -> str:
        self._buckets.setdefault(bucket, {})[path] = json.dumps(
            content, default=str, sort_keys=True
        ).encode("utf-8")
        return f"memory://{bucket}/{path}"

    def get_document(self, bucket: str, path: str) -> dict[str, Any]:
        """Get a stored document."""
        if bucket not in self._buckets or path not in self._buckets[bucket]:
            raise FileNotFoundError(f"Object not found: {bucket}/{path}")
        return json.loads(self._buckets[bucket][path])

    def object_exists(self, bucket: str, path: str) -> bool:
        return bucket in self._buckets and path in self._buckets[bucket]
