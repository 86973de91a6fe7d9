"""Capture lifecycle: record or upload media, extract, then hand off to a draft.

idle -> permission_pending -> capturing -> processing -> processed | error.
Only one capture is in flight; starting a new one resets the previous.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Optional, Union

from orderflow.clients.base import CatalogGateway, PersistenceGateway
from orderflow.core.config import get_settings
from orderflow.core.errors import CaptureStateError, ExtractionUnclearError
from orderflow.schemas.catalog import Product
from orderflow.schemas.extraction import CandidateDocument, Intent, MediaPayload

from .drafts import Draft, ImportSlipForNewProductDraft, open_draft

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    IDLE = "idle"
    PERMISSION_PENDING = "permission_pending"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


ALLOWED_TRANSITIONS = {
    CaptureState.IDLE: [CaptureState.PERMISSION_PENDING, CaptureState.PROCESSING],
    CaptureState.PERMISSION_PENDING: [CaptureState.CAPTURING, CaptureState.ERROR, CaptureState.IDLE],
    CaptureState.CAPTURING: [CaptureState.PROCESSING, CaptureState.ERROR, CaptureState.IDLE],
    CaptureState.PROCESSING: [CaptureState.PROCESSED, CaptureState.ERROR, CaptureState.IDLE],
    CaptureState.PROCESSED: [CaptureState.IDLE],
    CaptureState.ERROR: [CaptureState.PROCESSING, CaptureState.IDLE],
}

Extractor = Callable[[MediaPayload, Optional[Intent]], Awaitable[CandidateDocument]]


class Recorder(abc.ABC):
    """Audio source driven by the session (microphone, test double, ...)."""

    @abc.abstractmethod
    async def start(self) -> None:
        """Ask for permission and begin recording. Raise if permission is denied."""

    @abc.abstractmethod
    async def stop(self) -> MediaPayload:
        ...

    @abc.abstractmethod
    async def abort(self) -> None:
        """Stop recording and discard what was captured."""


async def _default_extractor(media: MediaPayload, intent_hint: Optional[Intent]) -> CandidateDocument:
    from .ai.extraction.service import extract_candidate_document

    result = await extract_candidate_document(media, intent_hint=intent_hint)
    return result.document


class CaptureSession:
    def __init__(
        self,
        catalog: CatalogGateway,
        persistence: PersistenceGateway,
        *,
        recorder: Optional[Recorder] = None,
        extractor: Optional[Extractor] = None,
        intent_hint: Optional[Intent] = None,
        max_recording_seconds: Optional[int] = None,
        tick_seconds: float = 1.0,
        debounce_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self._catalog = catalog
        self._persistence = persistence
        self._recorder = recorder
        self._extractor = extractor or _default_extractor
        self._tick = tick_seconds
        self._debounce = debounce_seconds
        self.intent_hint = intent_hint
        self.max_recording_seconds = (
            max_recording_seconds if max_recording_seconds is not None else settings.max_recording_seconds
        )

        self.state = CaptureState.IDLE
        self.remaining_seconds = 0
        self.document: Optional[CandidateDocument] = None
        self.draft: Optional[Draft] = None
        self.error: Optional[BaseException] = None
        self.last_media: Optional[MediaPayload] = None

        self._generation = 0
        self._countdown: Optional[asyncio.Task] = None
        self._auto_stop: Optional[asyncio.Task] = None

    # -- state machine ---------------------------------------------------

    def _transition(self, new_state: CaptureState) -> None:
        if new_state not in ALLOWED_TRANSITIONS.get(self.state, []):
            raise CaptureStateError(f"Illegal capture transition: {self.state.value} -> {new_state.value}")
        logger.info("Capture %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def _fail(self, exc: BaseException) -> None:
        self._cancel_countdown()
        self.error = exc
        self._transition(CaptureState.ERROR)

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""

    # -- recording -------------------------------------------------------

    async def start_capture(self) -> None:
        if self._recorder is None:
            raise CaptureStateError("No recorder configured for this session")
        if self.state != CaptureState.IDLE:
            await self.reset()
        generation = self._generation
        self._transition(CaptureState.PERMISSION_PENDING)
        try:
            await self._recorder.start()
        except Exception as exc:
            if generation == self._generation:
                logger.warning("Recorder failed to start: %s", exc)
                self._fail(exc)
            return
        if generation != self._generation:
            return
        self._transition(CaptureState.CAPTURING)
        self.remaining_seconds = self.max_recording_seconds
        self._countdown = asyncio.ensure_future(self._run_countdown(generation))

    async def _run_countdown(self, generation: int) -> None:
        while self.remaining_seconds > 0:
            await asyncio.sleep(self._tick)
            if generation != self._generation or self.state != CaptureState.CAPTURING:
                return
            self.remaining_seconds -= 1
        logger.info("Recording limit of %ss reached, stopping", self.max_recording_seconds)
        # stop_capture() must not run inside the countdown task it cancels
        self._countdown = None
        self._auto_stop = asyncio.ensure_future(self.stop_capture())

    async def stop_capture(self) -> Optional[CandidateDocument]:
        if self.state != CaptureState.CAPTURING:
            raise CaptureStateError(f"Cannot stop capture while {self.state.value}")
        self._cancel_countdown()
        generation = self._generation
        self._transition(CaptureState.PROCESSING)
        try:
            media = await self._recorder.stop()
        except Exception as exc:
            if generation == self._generation:
                logger.warning("Recorder failed to stop: %s", exc)
                self._fail(exc)
            return None
        return await self._process(media, generation)

    async def wait_auto_stop(self) -> Optional[CandidateDocument]:
        """Await the capture stopped by the countdown, if it fired."""
        while self._countdown is not None and not self._countdown.done():
            await asyncio.sleep(self._tick)
        if self._auto_stop is None:
            return None
        return await self._auto_stop

    # -- uploads / processing --------------------------------------------

    async def submit_media(self, media: MediaPayload) -> Optional[CandidateDocument]:
        """Process an uploaded image (or pre-recorded audio) directly."""
        if self.state != CaptureState.IDLE:
            await self.reset()
        self._transition(CaptureState.PROCESSING)
        return await self._process(media, self._generation)

    async def retry(self) -> Optional[CandidateDocument]:
        if self.state != CaptureState.ERROR or self.last_media is None:
            raise CaptureStateError("Nothing to retry")
        self.error = None
        self._transition(CaptureState.PROCESSING)
        return await self._process(self.last_media, self._generation)

    async def _process(self, media: MediaPayload, generation: int) -> Optional[CandidateDocument]:
        self.last_media = media
        try:
            document = await self._extractor(media, self.intent_hint)
        except Exception as exc:
            if generation == self._generation:
                logger.warning("Extraction failed: %s", exc)
                self._fail(exc)
            return None
        if generation != self._generation:
            logger.debug("Discarding extraction result of a superseded capture")
            return None
        if document.intent == Intent.UNCLEAR:
            self.document = document
            self._fail(ExtractionUnclearError("No structured data could be extracted from the capture"))
            return None
        self.document = document
        self._transition(CaptureState.PROCESSED)
        return document

    # -- hand-off --------------------------------------------------------

    async def open_draft(self) -> Draft:
        if self.state != CaptureState.PROCESSED or self.document is None:
            raise CaptureStateError(f"No processed capture to open (state {self.state.value})")
        draft = open_draft(self.document, self._catalog, debounce_seconds=self._debounce)
        await draft.seed(self.document)
        self._set_draft(draft)
        return draft

    async def open_import_for_new_product(
        self,
        product: Union[Product, str],
        *,
        supplier_name: str = "",
    ) -> ImportSlipForNewProductDraft:
        draft = ImportSlipForNewProductDraft(self._catalog, debounce_seconds=self._debounce)
        await draft.start(product, supplier_name=supplier_name)
        self._set_draft(draft)
        return draft

    def _set_draft(self, draft: Optional[Draft]) -> None:
        if self.draft is not None and self.draft is not draft:
            self.draft.close()
        self.draft = draft

    async def submit(self) -> str:
        if self.draft is None:
            raise CaptureStateError("No draft to submit")
        return await self.draft.submit(self._persistence)

    async def reset(self) -> None:
        """Cancel whatever is in flight and return to idle."""
        self._generation += 1
        self._cancel_countdown()
        if self._auto_stop is not None and not self._auto_stop.done():
            self._auto_stop.cancel()
        self._auto_stop = None
        if self.state in (CaptureState.PERMISSION_PENDING, CaptureState.CAPTURING) and self._recorder is not None:
            await self._recorder.abort()
        if self.state != CaptureState.IDLE:
            self._transition(CaptureState.IDLE)
        self.remaining_seconds = 0
        self.document = None
        self._set_draft(None)
        self.error = None
        self.last_media = None

    def _cancel_countdown(self) -> None:
        task = self._countdown
        self._countdown = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
