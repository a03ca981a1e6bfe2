"""Ingestion pipeline - turns a discovery search into a stored reading item.

Pipeline stages (strictly sequential):
1. ANALYZING: extract {title, author, description, content} from the search text
2. GENERATING_ART: cover image, only when enabled in AppSettings
3. COMMITTING: insert the new ReadingItem into the library store

Extraction and image failures degrade to fallbacks. Only a failed library
write ends the import as FAILED.

Usage:
    controller = IngestionController(service, library, get_preferences)
    result = await controller.search("sci-fi books 2024")
    item = await controller.import_result()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncGenerator, Callable

from lumina.core.ingest_job import (
    PHASE_MESSAGES,
    IngestEvent,
    IngestEventType,
    IngestJob,
    IngestJobStore,
    IngestPhase,
    IngestStatus,
    StageOutcome,
    StageStatus,
)
from lumina.core.models import AppSettings, ContentKind, ReadingItem, SearchResult
from lumina.providers.gemini import AIService, AIServiceError, ExtractedItem

if TYPE_CHECKING:
    from lumina.core.library import LibraryStore

logger = logging.getLogger(__name__)

IngestListener = Callable[[IngestEvent], None]


def fallback_item(raw_text: str) -> ExtractedItem:
    """Minimal metadata used when structured extraction fails."""
    return ExtractedItem(
        title="New Item",
        author="Unknown",
        description="Imported from search",
        content=raw_text,
    )


async def _analyze_stage(service: AIService, raw_text: str) -> StageOutcome[ExtractedItem]:
    try:
        return StageOutcome.success(await service.extract_structured_item(raw_text))
    except AIServiceError as e:
        logger.warning(f"Extraction failed, using raw search text: {e}")
        return StageOutcome.fallback(fallback_item(raw_text), str(e))
    except Exception as e:
        logger.exception("Unexpected extraction error, using raw search text")
        return StageOutcome.fallback(fallback_item(raw_text), f"{type(e).__name__}: {e}")


async def _art_stage(
    service: AIService,
    extracted: ExtractedItem,
    preferences: AppSettings,
) -> StageOutcome[str]:
    if not preferences.enable_ai_images:
        return StageOutcome.skipped()
    try:
        image = await service.synthesize_image(extracted.title, extracted.description)
    except AIServiceError as e:
        logger.warning(f"Cover generation failed, continuing without image: {e}")
        return StageOutcome.fallback(None, str(e))
    except Exception as e:
        logger.exception("Unexpected cover generation error, continuing without image")
        return StageOutcome.fallback(None, f"{type(e).__name__}: {e}")
    if not image:
        return StageOutcome.fallback(None, "No image returned")
    return StageOutcome.success(image)


def build_item(result: SearchResult, extracted: ExtractedItem, cover_image: str | None) -> ReadingItem:
    """Synthesize the ReadingItem committed by an import."""
    return ReadingItem.new(
        title=extracted.title,
        content=extracted.content,
        kind=ContentKind.ARTICLE,
        author=extracted.author,
        description=extracted.description,
        cover_image=cover_image,
        source_url=result.first_source_uri,
    )


def _commit_stage(library: LibraryStore, item: ReadingItem) -> StageOutcome[ReadingItem]:
    try:
        library.insert(item)
    except Exception as e:
        logger.exception(f"Library write failed for '{item.title}'")
        return StageOutcome.failed(str(e))
    return StageOutcome.success(item)


def _start(job: IngestJob, store: IngestJobStore, phase: IngestPhase) -> IngestEvent:
    job.phase = phase
    store.update(job)
    return _phase_start(job, phase)


def _phase_start(job: IngestJob, phase: IngestPhase) -> IngestEvent:
    return IngestEvent(
        type=IngestEventType.PHASE_START,
        phase=phase,
        data={"job_id": job.id, "message": PHASE_MESSAGES[phase]},
    )


async def run_import(
    job: IngestJob,
    result: SearchResult,
    preferences: AppSettings,
    service: AIService,
    library: LibraryStore,
    store: IngestJobStore,
) -> AsyncGenerator[IngestEvent, None]:
    """Run one import.

    Args:
        job: IngestJob created by `store.create()`
        result: The search result to import
        preferences: Current AppSettings (controls the image stage)
        service: External AI service
        library: Target library store
        store: Job store used for progress and cancellation

    Yields:
        IngestEvent at every stage transition, ending with IMPORT_COMPLETE,
        IMPORT_CANCELLED or IMPORT_FAILED.
    """
    # Phase 1: ANALYZING
    yield _start(job, store, IngestPhase.ANALYZING)
    extraction = await _analyze_stage(service, result.text)
    job.extraction = extraction.status
    store.update(job)
    yield IngestEvent(
        type=IngestEventType.PHASE_COMPLETE,
        phase=IngestPhase.ANALYZING,
        data={"outcome": extraction.status.value, "error": extraction.error},
    )
    extracted = extraction.value
    assert extracted is not None

    # Phase 2: GENERATING_ART
    if preferences.enable_ai_images:
        yield _start(job, store, IngestPhase.GENERATING_ART)
    art = await _art_stage(service, extracted, preferences)
    job.image = art.status
    store.update(job)
    yield IngestEvent(
        type=IngestEventType.PHASE_SKIPPED if art.status == StageStatus.SKIPPED else IngestEventType.PHASE_COMPLETE,
        phase=IngestPhase.GENERATING_ART,
        data={"outcome": art.status.value, "error": art.error},
    )

    # The owning view may have gone away while the AI calls were in flight
    if not store.begin_commit(job):
        logger.info(f"Import {job.id} cancelled, discarding result")
        yield IngestEvent(
            type=IngestEventType.IMPORT_CANCELLED,
            phase=job.phase,
            data=job.to_dict(),
        )
        return

    # Phase 3: COMMITTING
    yield _phase_start(job, IngestPhase.COMMITTING)
    commit = _commit_stage(library, build_item(result, extracted, art.value))
    if not commit.ok:
        job.phase = IngestPhase.FAILED
        job.status = IngestStatus.FAILED
        job.error = commit.error
        store.update(job)
        yield IngestEvent(
            type=IngestEventType.IMPORT_FAILED,
            phase=IngestPhase.FAILED,
            data={"error": commit.error, **job.to_dict()},
        )
        return

    item = commit.value
    assert item is not None
    job.phase = IngestPhase.COMMITTED
    job.status = IngestStatus.COMPLETED
    job.item_id = item.id
    store.update(job)
    yield IngestEvent(
        type=IngestEventType.IMPORT_COMPLETE,
        phase=IngestPhase.COMMITTED,
        data={"item": item.to_dict(), **job.to_dict()},
    )


class IngestionController:
    """Search and import for one user session.

    Search and import are decoupled: a caller may search many times before
    importing the latest result. Listeners receive every IngestEvent.
    """

    def __init__(
        self,
        service: AIService,
        library: LibraryStore,
        preferences: Callable[[], AppSettings],
        store: IngestJobStore | None = None,
    ) -> None:
        self._service = service
        self._library = library
        self._preferences = preferences
        self._store = store or IngestJobStore()
        self._phase = IngestPhase.IDLE
        self._last_result: SearchResult | None = None
        self._listeners: list[IngestListener] = []

    @property
    def phase(self) -> IngestPhase:
        return self._phase

    @property
    def last_result(self) -> SearchResult | None:
        return self._last_result

    @property
    def jobs(self) -> IngestJobStore:
        return self._store

    def subscribe(self, listener: IngestListener) -> Callable[[], None]:
        """Register `listener`; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: IngestEvent) -> None:
        self._phase = event.phase
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Ingest listener failed")

    async def search(self, query: str) -> SearchResult | None:
        """Run a grounded search.

        Returns None (and keeps no result) for blank queries or service failures.
        """
        query = (query or "").strip()
        if not query:
            return None

        self._last_result = None
        self._emit(IngestEvent(
            type=IngestEventType.SEARCH_START,
            phase=IngestPhase.SEARCHING,
            data={"query": query, "message": PHASE_MESSAGES[IngestPhase.SEARCHING]},
        ))
        try:
            result = await self._service.search(query)
        except Exception as e:
            logger.warning(f"Search for '{query}' failed: {e}")
            self._emit(IngestEvent(
                type=IngestEventType.SEARCH_FAILED,
                phase=IngestPhase.IDLE,
                data={"query": query, "error": str(e)},
            ))
            return None

        self._last_result = result
        self._emit(IngestEvent(
            type=IngestEventType.SEARCH_COMPLETE,
            phase=IngestPhase.IDLE,
            data={"query": query, "result": result.to_dict()},
        ))
        return result

    def start_import(self, result: SearchResult | None = None) -> IngestJob | None:
        """Reserve the import slot for `result` (default: the last search result).

        Returns None when there is nothing to import.

        Raises:
            ImportInProgressError: If another import is still running.
        """
        result = result or self._last_result
        if result is None:
            return None
        return self._store.create(result)

    async def stream_import(
        self,
        result: SearchResult | None = None,
        job: IngestJob | None = None,
    ) -> AsyncGenerator[IngestEvent, None]:
        """Run an import, yielding progress.

        `job` is a job reserved with `start_import`; without one a job is
        started for `result` (default: the last search result). Yields nothing
        when there is no result to import.

        Raises:
            ImportInProgressError: If another import is still running.
        """
        if job is None:
            job = self.start_import(result)
            if job is None:
                return
        assert job.result is not None

        try:
            async for event in run_import(
                job,
                job.result,
                self._preferences(),
                self._service,
                self._library,
                self._store,
            ):
                self._emit(event)
                yield event
        finally:
            # Consumer stopped early: nobody will see the result, so don't commit it
            if job.status == IngestStatus.RUNNING:
                self._store.cancel(job.id, force=True)
            if job.status == IngestStatus.CANCELLED:
                self._phase = IngestPhase.IDLE

    async def import_result(self, result: SearchResult | None = None) -> ReadingItem | None:
        """Import and return the committed item, or None if nothing was committed."""
        committed: ReadingItem | None = None
        async for event in self.stream_import(result):
            if event.type == IngestEventType.IMPORT_COMPLETE:
                committed = self._library.get(event.data["item"]["id"])
        return committed

    def cancel_import(self) -> bool:
        """Cancel the running import, if any. Its result will be discarded.

        Returns False when nothing is running or the import is already committing.
        """
        job = self._store.get_running()
        if job is None:
            return False
        return self._store.cancel(job.id) is not None
