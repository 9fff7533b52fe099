"""Process-wide wiring of the check pipeline.

One container is built per process; it owns the only admission queue,
similarity cache and embedding job queue.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from adlex.core.config import Settings, settings as default_settings
from adlex.core.database import DatabaseClient, close_database, create_engine, create_session_maker, init_database
from adlex.core.llm_client import OpenAICompatibleClient, create_llm_client_from_settings
from adlex.schemas.dictionaries import RankedCandidate
from adlex.services.checks.check_service import CheckService
from adlex.services.checks.processor import CheckProcessor
from adlex.services.checks.queue_manager import AdmissionQueueManager
from adlex.services.detection.violation_detector import ViolationDetector
from adlex.services.dictionaries.dictionary_service import DictionaryService
from adlex.services.embeddings.batch_queue import EmbeddingBatchQueue
from adlex.services.similarity.cache import TTLCache
from adlex.services.similarity.embedding_cache import CachedEmbedder
from adlex.services.similarity.resolver import DictionarySimilarityResolver
from adlex.services.streaming.broker import StreamingUpdateBroker
from adlex.store.check_store import CheckStore
from adlex.store.dictionary_store import DictionaryStore
from adlex.store.notifier import CheckChangeNotifier
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class Container:
    settings: Settings
    engine: AsyncEngine
    db_client: DatabaseClient
    llm_client: OpenAICompatibleClient
    notifier: CheckChangeNotifier
    check_store: CheckStore
    dictionary_store: DictionaryStore
    cache: TTLCache[list[RankedCandidate]]
    embedding_cache: TTLCache[list[float]]
    resolver: DictionarySimilarityResolver
    detector: ViolationDetector
    processor: CheckProcessor
    queue: AdmissionQueueManager
    broker: StreamingUpdateBroker
    embedding_queue: EmbeddingBatchQueue
    check_service: CheckService
    dictionary_service: DictionaryService

    async def startup(self, create_tables: bool = True) -> None:
        await init_database(self.db_client, create_tables=create_tables)

    async def shutdown(self) -> None:
        await self.queue.shutdown()
        await self.embedding_queue.shutdown()
        await close_database(self.db_client)
        LOGGER.info("Container shut down")


def build_container(app_settings: Optional[Settings] = None) -> Container:
    app_settings = app_settings or default_settings

    engine = create_engine(app_settings.db)
    session_maker = create_session_maker(engine)
    llm_client = create_llm_client_from_settings(app_settings.llm)

    notifier = CheckChangeNotifier()
    check_store = CheckStore(session_maker, notifier)
    dictionary_store = DictionaryStore(session_maker)
    cache: TTLCache[list[RankedCandidate]] = TTLCache(default_ttl=app_settings.checks.cache_ttl_seconds)

    embedding_cache: TTLCache[list[float]] = TTLCache(
        default_ttl=app_settings.similarity.embedding_cache_ttl_seconds
    )
    query_embedder = CachedEmbedder(
        llm_client, embedding_cache, ttl=app_settings.similarity.embedding_cache_ttl_seconds
    )

    resolver = DictionarySimilarityResolver(dictionary_store, query_embedder, app_settings.similarity)
    detector = ViolationDetector(
        llm_client,
        temperature=app_settings.llm.detector_temperature,
        max_tokens=app_settings.llm.detector_max_tokens,
    )
    processor = CheckProcessor(
        check_store,
        resolver,
        detector,
        cache,
        cache_ttl=app_settings.checks.cache_ttl_seconds,
        timeout_seconds=app_settings.checks.timeout_seconds,
        max_reference_entries=app_settings.checks.max_reference_entries,
    )
    queue = AdmissionQueueManager(processor, max_concurrent=app_settings.checks.max_concurrent)

    container = Container(
        settings=app_settings,
        engine=engine,
        db_client=DatabaseClient(engine),
        llm_client=llm_client,
        notifier=notifier,
        check_store=check_store,
        dictionary_store=dictionary_store,
        cache=cache,
        embedding_cache=embedding_cache,
        resolver=resolver,
        detector=detector,
        processor=processor,
        queue=queue,
        broker=StreamingUpdateBroker(check_store, app_settings.stream),
        embedding_queue=EmbeddingBatchQueue(
            dictionary_store,
            llm_client,
            retention=timedelta(seconds=app_settings.embedding_jobs.retention_seconds),
            cache=cache,
        ),
        check_service=CheckService(check_store, queue, max_text_length=app_settings.checks.max_text_length),
        dictionary_service=DictionaryService(dictionary_store, llm_client, cache),
    )
    LOGGER.info(
        "Container built",
        extra={"max_concurrent": app_settings.checks.max_concurrent, "llm_provider": app_settings.llm.provider},
    )
    return container
