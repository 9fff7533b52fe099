"""Runs one check through similarity lookup, detection and persistence."""

import asyncio
from collections.abc import Sequence
from typing import Optional, Protocol
from uuid import UUID

from adlex.core.exceptions import describe_failure
from adlex.schemas.checks import DetectedViolation, DetectionResult, InputType
from adlex.schemas.dictionaries import DictionaryCategory, RankedCandidate, SimilarityResult
from adlex.services.similarity.cache import TTLCache, similarity_key
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class CheckWriter(Protocol):
    async def mark_processing(self, check_id: UUID) -> bool: ...

    async def complete_check(
        self, check_id: UUID, modified_text: str, violations: Sequence[DetectedViolation]
    ) -> bool: ...

    async def fail_check(self, check_id: UUID, error_message: str) -> bool: ...

    async def increment_usage(self, organization_id: UUID) -> None: ...


class Resolver(Protocol):
    async def resolve(self, text: str, organization_id: UUID) -> SimilarityResult: ...


class Detector(Protocol):
    async def detect(self, text: str, references: Sequence[RankedCandidate]) -> DetectionResult: ...


class CheckProcessor:
    """Orchestrates resolver, detector and store for a single check.

    ``process`` never raises for pipeline failures: every outcome ends up as
    the check's persisted status. Only task cancellation propagates.
    """

    def __init__(
        self,
        store: CheckWriter,
        resolver: Resolver,
        detector: Detector,
        cache: TTLCache[list[RankedCandidate]],
        cache_ttl: float = 300.0,
        timeout_seconds: float = 120.0,
        max_reference_entries: int = 20,
    ):
        self.store = store
        self.resolver = resolver
        self.detector = detector
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.timeout_seconds = timeout_seconds
        self.max_reference_entries = max_reference_entries

    async def process(
        self,
        check_id: UUID,
        text: str,
        organization_id: UUID,
        input_type: InputType = InputType.TEXT,
    ) -> None:
        log_extra = {"check_id": str(check_id), "input_type": input_type.value}

        try:
            claimed = await self.store.mark_processing(check_id)
        except Exception as e:
            LOGGER.error("Could not mark check processing", exc_info=True, extra=log_extra)
            await self._fail(check_id, describe_failure(e))
            return
        if not claimed:
            LOGGER.info("Check is no longer queued, skipping", extra=log_extra)
            return

        LOGGER.info("Check processing started", extra=log_extra)
        try:
            await asyncio.wait_for(self._run(check_id, text, organization_id), timeout=self.timeout_seconds)
        except Exception as e:
            LOGGER.error(
                "Check processing failed",
                exc_info=True,
                extra={**log_extra, "error_type": type(e).__name__},
            )
            await self._fail(check_id, describe_failure(e))

    async def _run(self, check_id: UUID, text: str, organization_id: UUID) -> None:
        candidates = await self.lookup_candidates(text, organization_id)

        if not candidates:
            result = DetectionResult(modified=text, violations=[])
        else:
            references = [c for c in candidates if c.category == DictionaryCategory.NG]
            result = await self.detector.detect(text, references[: self.max_reference_entries])

        violations = [violation.clamp(len(text)) for violation in result.violations]
        completed = await self.store.complete_check(check_id, result.modified, violations)
        if not completed:
            # Cancelled while the detector was running; its result is dropped.
            LOGGER.info("Check result discarded", extra={"check_id": str(check_id)})
            return

        try:
            await self.store.increment_usage(organization_id)
        except Exception:
            LOGGER.error(
                "Failed to increment organization usage",
                exc_info=True,
                extra={"check_id": str(check_id), "organization_id": str(organization_id)},
            )

    async def lookup_candidates(self, text: str, organization_id: UUID) -> list[RankedCandidate]:
        """Ranked dictionary candidates for ``text``, served from cache when fresh."""
        key = similarity_key(organization_id, text)
        cached = self.cache.get(key)
        if cached is not None:
            LOGGER.debug("Similarity cache hit", extra={"organization_id": str(organization_id)})
            return cached

        result = await self.resolver.resolve(text, organization_id)
        if result.degraded:
            # Lexical-only ranking; the next identical text must retry the embedding
            LOGGER.info(
                "Similarity result not cached, query embedding unavailable",
                extra={"organization_id": str(organization_id)},
            )
        else:
            self.cache.set(key, result.candidates, ttl=self.cache_ttl)
        return result.candidates

    async def _fail(self, check_id: UUID, message: str) -> Optional[bool]:
        try:
            return await self.store.fail_check(check_id, message)
        except Exception:
            LOGGER.error("Failed to record check failure", exc_info=True, extra={"check_id": str(check_id)})
            return None
