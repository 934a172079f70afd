"""Abstract record-store interface.

The engine only ever talks to the external CRM through this surface:
resolve an object, list its attributes, query, create, patch. Concrete
implementations own transport, caching and rate limiting.
"""

from abc import ABC, abstractmethod
from typing import Any

from crmflow.schema.models import AttributeDefinition, ObjectDefinition
from crmflow.store.models import Record


class RecordStoreError(Exception):
    """A record-store call failed (network error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitedError(RecordStoreError):
    """The store kept answering 429 after the retry."""


class RecordStore(ABC):
    """Async record-store operations used by the engine."""

    @abstractmethod
    async def list_objects(self) -> list[ObjectDefinition]:
        """All schema-backed objects in the workspace."""

    @abstractmethod
    async def get_object(self, slug: str) -> ObjectDefinition:
        """Resolve a human object identifier to its definition.

        Discovery goes through ``list_objects``; this lookup is for hosts
        that need a single object by slug.
        """

    @abstractmethod
    async def list_attributes(self, object_id: str) -> list[AttributeDefinition]:
        """Attribute metadata for one object."""

    @abstractmethod
    async def query_records(
        self,
        object_slug: str,
        filter: dict[str, Any] | None = None,
        limit: int = 100,
    ) -> list[Record]:
        """Fetch records, optionally filtered, at most ``limit``."""

    @abstractmethod
    async def create_record(
        self,
        object_slug: str,
        values: dict[str, Any],
        linked_records: list[dict[str, Any]] | None = None,
    ) -> Record:
        """Create a record and return it."""

    @abstractmethod
    async def patch_record(
        self,
        object_slug: str,
        record_id: str,
        values: dict[str, Any],
        linked_records: list[dict[str, Any]] | None = None,
    ) -> Record:
        """Patch an existing record and return it."""

    async def aclose(self) -> None:
        """Release transport resources. No-op by default."""
