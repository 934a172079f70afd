"""Engine context: the shared, process-wide state one host session owns.

Holds the schema catalog, the three caches, the two rate limiters, the
clients and the rolling conversation history. Construct one per session
and reuse it across ``process_text`` calls; nothing here is global.
"""

import collections
import logging
from dataclasses import dataclass, field

from crmflow.cache import ResponseCache
from crmflow.config import CrmflowConfig
from crmflow.extract.llm_client import LLMClient
from crmflow.extract.models import EntityPlan
from crmflow.limits import RateLimiter
from crmflow.schema.catalog import SchemaCatalog
from crmflow.schema.openapi import load_openapi_spec
from crmflow.store.base import RecordStore
from crmflow.store.http import HttpRecordStore

logger = logging.getLogger(__name__)


class ConversationHistory:
    """In-memory rolling window of recently detected names. Never persisted."""

    def __init__(self, size: int = 10):
        self._entries: collections.deque[list[str]] = collections.deque(maxlen=size)

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, plan: EntityPlan) -> None:
        names = [e.label for e in plan.entities if e.label]
        if names:
            self._entries.append(names)

    def recent_names(self) -> list[str]:
        seen: list[str] = []
        for names in reversed(self._entries):
            for name in names:
                if name not in seen:
                    seen.append(name)
        return seen


@dataclass
class EngineContext:
    store: RecordStore
    llm: LLMClient
    catalog: SchemaCatalog
    store_cache: ResponseCache | None = None
    llm_cache: ResponseCache | None = None
    resolution_cache: ResponseCache = field(default_factory=lambda: ResponseCache(3600.0, name="resolution"))
    store_limiter: RateLimiter | None = None
    llm_limiter: RateLimiter | None = None
    history: ConversationHistory = field(default_factory=ConversationHistory)
    query_limit: int = 100
    catalog_limit: int = 10

    @classmethod
    def from_config(
        cls,
        config: CrmflowConfig,
        model: str | None = None,
        store: RecordStore | None = None,
        llm: LLMClient | None = None,
    ) -> "EngineContext":
        """Wire every component from configuration.

        ``store`` and ``llm`` may be injected (tests, alternative backends);
        otherwise an ``HttpRecordStore`` and a LiteLLM client are built.
        """
        store_cache = ResponseCache(config.store_cache_ttl, config.max_cache_size, name="store")
        llm_cache = ResponseCache(config.llm_cache_ttl, config.max_cache_size, name="llm")
        resolution_cache = ResponseCache(config.resolution_cache_ttl, config.max_cache_size, name="resolution")
        store_limiter = RateLimiter(config.store_rpm, name="store")
        llm_limiter = RateLimiter(config.llm_rpm, name="llm")

        if store is None:
            config.validate_store_key()
            store = HttpRecordStore(
                api_key=config.store_api_key or "",
                base_url=config.store_base_url,
                cache=store_cache,
                limiter=store_limiter,
                timeout=config.request_timeout,
            )
        if llm is None:
            llm = LLMClient(model or config.default_model, limiter=llm_limiter, cache=llm_cache)

        openapi_spec = None
        if config.openapi_spec_path:
            try:
                openapi_spec = load_openapi_spec(config.openapi_spec_path)
            except ValueError as e:
                logger.warning(f"Ignoring OpenAPI spec: {e}")

        return cls(
            store=store,
            llm=llm,
            catalog=SchemaCatalog(store, openapi_spec=openapi_spec),
            store_cache=store_cache,
            llm_cache=llm_cache,
            resolution_cache=resolution_cache,
            store_limiter=store_limiter,
            llm_limiter=llm_limiter,
            history=ConversationHistory(config.history_size),
            query_limit=config.query_limit,
            catalog_limit=config.catalog_limit,
        )
