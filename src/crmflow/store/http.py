"""HTTP record-store client using httpx.

The only component that performs network I/O against the business API.
Read responses (GET and query POSTs) are cached with a TTL; cache hits
skip both the network and the rate limiter. A 429 is honoured once: wait
the indicated interval, retry the same call, and give up after that.
"""

import asyncio
import logging
from typing import Any

import httpx

from crmflow.cache import ResponseCache, stable_hash
from crmflow.limits import RateLimiter
from crmflow.schema.models import AttributeDefinition, ObjectDefinition, is_auxiliary
from crmflow.store.base import RateLimitedError, RecordStore, RecordStoreError
from crmflow.store.models import Record

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.attio.com/v2"


def _query_route(slug: str, limit: int) -> tuple[str, str]:
    if is_auxiliary(slug):
        return "GET", f"/{slug}?limit={limit}"
    return "POST", f"/objects/{slug}/records/query"


def _record_route(slug: str, record_id: str | None = None) -> str:
    base = f"/{slug}" if is_auxiliary(slug) else f"/objects/{slug}/records"
    return f"{base}/{record_id}" if record_id else base


def build_request_body(
    slug: str,
    values: dict[str, Any],
    linked_records: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Wrap attribute values in the body shape the store expects.

    Schema-backed objects take ``{"data": {"values": ...}}``; auxiliary
    resources take their fields flat under ``data``.
    """
    if is_auxiliary(slug):
        data: dict[str, Any] = dict(values)
        if linked_records is not None:
            data["linked_records"] = linked_records
        return {"data": data}
    data = {"values": values}
    if linked_records:
        data["linked_records"] = linked_records
    return {"data": data}


def _parse_retry_after(value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        return max(float(value), 0.0)
    except ValueError:
        return default


class HttpRecordStore(RecordStore):
    """Record store backed by the CRM's REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        cache: ResponseCache | None = None,
        limiter: RateLimiter | None = None,
        timeout: float = 30.0,
        rate_limit_wait: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self.limiter = limiter
        self.rate_limit_wait = rate_limit_wait
        self.request_count = 0
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(self, method: str, endpoint: str, body: dict | None) -> httpx.Response:
        if self.limiter is not None:
            await self.limiter.wait()
        self.request_count += 1
        logger.debug(f"{method} {endpoint}")
        try:
            return await self._client.request(method, endpoint, json=body)
        except httpx.HTTPError as exc:
            raise RecordStoreError(f"{method} {endpoint} failed: {exc}") from exc

    async def request(self, method: str, endpoint: str, body: dict | None = None) -> dict:
        """Issue one API call, consulting the read cache first."""
        cacheable = method == "GET" or (method == "POST" and endpoint.endswith("/query"))
        cache_key = f"{method}:{endpoint}:{stable_hash(body)}"
        if cacheable and self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Using cached response for {method} {endpoint}")
                return cached

        response = await self._send(method, endpoint, body)
        if response.status_code == 429:
            wait = _parse_retry_after(response.headers.get("Retry-After"), self.rate_limit_wait)
            logger.warning(f"Rate limited on {method} {endpoint}, retrying in {wait:.0f}s")
            await asyncio.sleep(wait)
            response = await self._send(method, endpoint, body)
            if response.status_code == 429:
                raise RateLimitedError(
                    f"Rate limited twice on {method} {endpoint}",
                    status_code=429,
                    body=response.text,
                )

        if response.is_error:
            logger.error(f"API error ({response.status_code}) on {method} {endpoint}: {response.text[:300]}")
            raise RecordStoreError(
                f"API error ({response.status_code}): {response.text[:300]}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            result = response.json()
        except ValueError:
            result = {"raw": response.text}

        if cacheable and self.cache is not None:
            self.cache.set(cache_key, result)
        return result

    def _invalidate_queries(self, slug: str) -> None:
        if self.cache is None:
            return
        method, endpoint = _query_route(slug, 0)
        prefix = f"{method}:{endpoint.split('?')[0]}"
        self.cache.invalidate(lambda key: key.startswith(prefix))

    # ------------------------------------------------------------------
    # RecordStore operations
    # ------------------------------------------------------------------

    async def list_objects(self) -> list[ObjectDefinition]:
        response = await self.request("GET", "/objects")
        objects = []
        for raw in response.get("data") or []:
            obj = _object_from_api(raw)
            if obj is None:
                logger.warning(f"Skipping object with missing id or slug: {raw}")
                continue
            objects.append(obj)
        return objects

    async def get_object(self, slug: str) -> ObjectDefinition:
        response = await self.request("GET", f"/objects/{slug}")
        obj = _object_from_api(response.get("data") or {})
        if obj is None:
            raise RecordStoreError(f"Cannot resolve object slug: {slug}")
        return obj

    async def list_attributes(self, object_id: str) -> list[AttributeDefinition]:
        response = await self.request("GET", f"/objects/{object_id}/attributes")
        attributes = []
        for raw in response.get("data") or []:
            raw_id = raw.get("id")
            attr_id = raw_id.get("attribute_id") if isinstance(raw_id, dict) else raw_id
            slug = raw.get("api_slug")
            if not attr_id or not slug:
                continue
            config = raw.get("config") or {}
            attributes.append(AttributeDefinition(
                slug=slug,
                id=attr_id,
                name=raw.get("title") or raw.get("name") or slug,
                type=raw.get("type") or "text",
                required=bool(raw.get("is_required", False)),
                multivalue=bool(raw.get("is_multiselect", raw.get("is_multivalue", False))),
                config=config,
                options=raw.get("options") or config.get("options") or [],
                description=raw.get("description") or "",
            ))
        return attributes

    async def query_records(
        self,
        object_slug: str,
        filter: dict[str, Any] | None = None,
        limit: int = 100,
    ) -> list[Record]:
        method, endpoint = _query_route(object_slug, limit)
        body = None
        if method == "POST":
            body = {"limit": limit}
            if filter:
                body["filter"] = filter
        response = await self.request(method, endpoint, body)
        return [Record.from_api(item) for item in response.get("data") or [] if isinstance(item, dict)]

    async def create_record(
        self,
        object_slug: str,
        values: dict[str, Any],
        linked_records: list[dict[str, Any]] | None = None,
    ) -> Record:
        body = build_request_body(object_slug, values, linked_records)
        response = await self.request("POST", _record_route(object_slug), body)
        self._invalidate_queries(object_slug)
        return Record.from_api(response.get("data") or {})

    async def patch_record(
        self,
        object_slug: str,
        record_id: str,
        values: dict[str, Any],
        linked_records: list[dict[str, Any]] | None = None,
    ) -> Record:
        body = build_request_body(object_slug, values, linked_records)
        response = await self.request("PATCH", _record_route(object_slug, record_id), body)
        self._invalidate_queries(object_slug)
        record = Record.from_api(response.get("data") or {})
        if not record.id:
            record.id = record_id
        return record

    async def test_connection(self) -> dict[str, Any]:
        """Cheap connectivity probe for hosts."""
        try:
            objects = await self.list_objects()
        except RecordStoreError as e:
            return {"success": False, "message": str(e)}
        return {"success": True, "message": "Connection successful", "object_count": len(objects)}


def _object_from_api(raw: dict[str, Any]) -> ObjectDefinition | None:
    raw_id = raw.get("id")
    object_id = raw_id.get("object_id") if isinstance(raw_id, dict) else raw_id
    slug = raw.get("api_slug")
    if not object_id or not slug:
        return None
    return ObjectDefinition(
        slug=slug,
        id=object_id,
        name=raw.get("plural_noun") or raw.get("name") or slug,
        description=raw.get("description") or "",
    )
