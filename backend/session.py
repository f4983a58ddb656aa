"""
Generation Session - orchestration state machine

analysis (3 concurrent calls) -> scenario generation -> parallel per-scenario
portrait generation, plus single-item regeneration, custom items and derived
media (video / meme) keyed off a completed portrait.

Network calls never run under the session lock. Every write is addressed by
index and tagged with the session epoch (bumped on reset / source edits) and,
for single-slot operations, a per-slot dispatch token, so a slow completion
can never overwrite newer state.
"""
import uuid
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Callable, Optional

import gemini_service
import image_codec
import prompts
from logging_config import get_session_logger
from models import (
    SOURCE_SLOTS, SessionState, ItemStatus, MediaStatus, MediaKind,
    SourceImageSet, GenerationItem, DerivedMediaState, DerivedMediaConfig,
    SessionSnapshot
)

IMAGE_COUNT = 5

ENTITY_NOT_FOUND = 'Requested entity was not found.'
REAUTHORIZE_MESSAGE = 'Your API key may be invalid. Please re-select your API key to continue.'


class SessionStateError(Exception):
    """Operation is not allowed in the session's current state"""
    pass


class GenerationSession:
    """
    Owns all mutable state for one user session.

    `service` is anything exposing the gemini_service generation functions
    (analyze_image_content, generate_scenarios, generate_styled_image,
    generate_meme_image, generate_styled_video); defaults to the module itself.
    """

    def __init__(self, service=None, session_id: Optional[str] = None,
                 on_reauthorization_required: Optional[Callable[[], None]] = None):
        self.session_id = session_id or str(uuid.uuid4())[:8]
        self.service = service or gemini_service
        self.on_reauthorization_required = on_reauthorization_required
        self.log = get_session_logger('session', self.session_id)

        self._lock = threading.Lock()
        self._epoch = 0
        self._tokens = {}  # slot key -> latest dispatch token

        self._sources = SourceImageSet()
        self._state = SessionState.IDLE
        self._items: list[GenerationItem] = []
        self._scenarios: list[Optional[str]] = []
        self._media = {kind: DerivedMediaState() for kind in MediaKind}
        self._media_config = {
            MediaKind.VIDEO: DerivedMediaConfig(0, prompts.VIDEO_MOTION_PRESETS[0]),
            MediaKind.MEME: DerivedMediaConfig(0, prompts.MEME_CAPTION_PRESETS[0]),
        }
        self.reauthorization_required = False

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def items(self) -> list[GenerationItem]:
        with self._lock:
            return list(self._items)

    @property
    def scenarios(self) -> list[Optional[str]]:
        """Scenario text per item index; None for slots that failed before scenarios existed."""
        with self._lock:
            return list(self._scenarios)

    @property
    def source_images(self) -> SourceImageSet:
        return self._sources

    def media_state(self, kind) -> DerivedMediaState:
        return self._media[MediaKind(kind)]

    def media_config(self, kind) -> DerivedMediaConfig:
        return replace(self._media_config[MediaKind(kind)])

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                session_id=self.session_id,
                state=self._state,
                source_counts=self._sources.counts(),
                scenarios=list(self._scenarios),
                items=list(self._items),
                video=self._media[MediaKind.VIDEO],
                meme=self._media[MediaKind.MEME],
                video_config=replace(self._media_config[MediaKind.VIDEO]),
                meme_config=replace(self._media_config[MediaKind.MEME]),
                reauthorization_required=self.reauthorization_required
            )

    # ------------------------------------------------------------------
    # Source images and reset
    # ------------------------------------------------------------------

    def set_source_images(self, slot: str, images) -> None:
        """
        Replace one source group. Every image is validated first; any edit
        discards generated items, scenarios and derived media.
        """
        if slot not in SOURCE_SLOTS:
            raise ValueError(f"Unknown source slot: {slot!r} (expected one of {', '.join(SOURCE_SLOTS)})")
        images = list(images)
        for i, data_url in enumerate(images):
            image_codec.decode(data_url, f"{slot.capitalize()} Image {i + 1}")

        with self._lock:
            self._sources = self._sources.replace(slot, images)
            self._clear_results()
            self._state = SessionState.IDLE if self._sources.is_empty else SessionState.READY
            counts = self._sources.counts()

        self.log.info(f"Source images updated: {counts} -> {self._state.value}")

    def reset(self) -> None:
        """Drop everything and return to idle."""
        with self._lock:
            self._sources = SourceImageSet()
            self._clear_results()
            self._state = SessionState.IDLE
            self.reauthorization_required = False
        self.log.info("Session reset")

    def _clear_results(self):
        # caller holds the lock
        self._epoch += 1
        self._tokens = {}
        self._items = []
        self._scenarios = []
        self._media = {kind: DerivedMediaState() for kind in MediaKind}

    # ------------------------------------------------------------------
    # Full-session run
    # ------------------------------------------------------------------

    def run_full_generation(self, user_intent: Optional[str] = None) -> list[GenerationItem]:
        """
        Analyze sources, generate scenarios, then generate one portrait per
        scenario in parallel. Returns the committed items.

        A failure before dispatch marks all IMAGE_COUNT slots with the same
        error. Per-scenario failures only affect their own slot.
        """
        with self._lock:
            if self._state != SessionState.READY:
                raise SessionStateError(f"Cannot start generation from state '{self._state.value}'")
            self._state = SessionState.GENERATING
            self._items = [GenerationItem.pending() for _ in range(IMAGE_COUNT)]
            self._scenarios = []
            epoch = self._epoch
            sources = self._sources

        self.log.info(f"Step 1/3: Analyzing source images {sources.counts()}")
        try:
            subject_desc, object_desc, style_desc = self._analyze_sources(sources)
            self.log.info("Step 2/3: Generating scenarios")
            scenarios = [str(s) for s in self.service.generate_scenarios(
                subject_desc, object_desc, style_desc, user_intent
            )]
        except Exception as e:
            self.log.error(f"Generation failed before dispatch: {e}")
            failed = GenerationItem.failed(str(e), getattr(e, 'is_quota_error', False))
            items = [failed] * IMAGE_COUNT
            with self._lock:
                if self._epoch != epoch:
                    self.log.info("Session changed during generation, discarding results")
                    return items
                self._items = list(items)
                self._scenarios = [None] * IMAGE_COUNT
                self._state = SessionState.RESULTS_SHOWN
            return items

        with self._lock:
            if self._epoch == epoch:
                self._scenarios = list(scenarios)

        self.log.info(f"Step 3/3: Generating {len(scenarios)} portraits")
        items = self._generate_all(scenarios, sources)

        with self._lock:
            if self._epoch != epoch:
                self.log.info("Session changed during generation, discarding results")
                return items
            self._items = list(items)
            self._state = SessionState.RESULTS_SHOWN

        done = sum(1 for item in items if item.status == ItemStatus.DONE)
        self.log.info(f"Generation complete: {done}/{len(items)} portraits")
        return items

    def _analyze_sources(self, sources: SourceImageSet) -> list[str]:
        """Run the three analysis calls concurrently; the first failure fails the step."""
        with ThreadPoolExecutor(max_workers=len(SOURCE_SLOTS)) as executor:
            futures = [
                executor.submit(
                    self.service.analyze_image_content,
                    list(sources.get(slot)),
                    prompts.ANALYSIS_INSTRUCTIONS[slot]
                )
                for slot in SOURCE_SLOTS
            ]
            return [future.result() for future in futures]

    def _generate_all(self, scenarios: list[str], sources: SourceImageSet) -> list[GenerationItem]:
        """Settle-all fan-out: every scenario gets a terminal item, whatever its siblings do."""
        if not scenarios:
            return []

        results = {}
        with ThreadPoolExecutor(max_workers=len(scenarios)) as executor:
            futures = {
                executor.submit(self._generate_task, index, scenario, sources): index
                for index, scenario in enumerate(scenarios)
            }
            for future in as_completed(futures):
                index, result = future.result()
                results[index] = result

        return [self._to_item(results[index]) for index in range(len(scenarios))]

    def _generate_task(self, index: int, scenario: str, sources: SourceImageSet):
        """Generate one portrait; returns (index, data_url_or_exception)."""
        prompt = prompts.build_portrait_prompt(
            scenario,
            has_subject=bool(sources.subject),
            has_object=bool(sources.object),
            has_style=bool(sources.style)
        )
        try:
            return index, self.service.generate_styled_image(sources, prompt)
        except Exception as e:
            self.log.warning(f"Portrait {index} failed: {e}")
            return index, e

    @staticmethod
    def _to_item(result) -> GenerationItem:
        if isinstance(result, Exception):
            return GenerationItem.failed(str(result), getattr(result, 'is_quota_error', False))
        return GenerationItem.done(result)

    # ------------------------------------------------------------------
    # Single-slot operations
    # ------------------------------------------------------------------

    def regenerate_item(self, index: int) -> Optional[GenerationItem]:
        """
        Re-run portrait generation for one slot using its known scenario.
        Returns the new item, or None when the slot has no scenario.
        """
        with self._lock:
            self._require_results('regenerate')
            if not 0 <= index < min(len(self._items), len(self._scenarios)) or not self._scenarios[index]:
                self.log.warning(f"Regenerate ignored: no scenario at index {index}")
                return None
            scenario = self._scenarios[index]
            self._items[index] = GenerationItem.pending()
            token = self._next_token(('item', index))
            epoch = self._epoch
            sources = self._sources

        self.log.info(f"Regenerating portrait {index}")
        _, result = self._generate_task(index, scenario, sources)
        item = self._to_item(result)
        self._commit_item(index, item, epoch, token)
        return item

    def append_custom_item(self, text: str) -> Optional[int]:
        """
        Add a user-written scenario at the next index and generate it.
        Blank text is ignored. Returns the new index.
        """
        if not text or not text.strip():
            return None

        with self._lock:
            self._require_results('add a custom scene')
            index = len(self._items)
            self._items.append(GenerationItem.pending())
            self._scenarios.extend([None] * (index - len(self._scenarios)))
            self._scenarios.append(text)
            token = self._next_token(('item', index))
            epoch = self._epoch
            sources = self._sources

        self.log.info(f"Custom scene added at index {index}")
        _, result = self._generate_task(index, text, sources)
        self._commit_item(index, self._to_item(result), epoch, token)
        return index

    def configure_derived_media(self, kind, source_index: Optional[int] = None,
                                text: Optional[str] = None) -> DerivedMediaConfig:
        """Update the video/meme config. Does not start generation."""
        kind = MediaKind(kind)
        with self._lock:
            config = self._media_config[kind]
            if source_index is not None:
                config.source_index = int(source_index)
            if text is not None:
                config.text = text
            return replace(config)

    def generate_derived_media(self, kind) -> bool:
        """
        Generate the configured video or meme from a completed portrait.
        Returns False without doing anything if the source item is not done.
        """
        kind = MediaKind(kind)
        with self._lock:
            config = replace(self._media_config[kind])
            index = config.source_index
            source = self._items[index] if 0 <= index < len(self._items) else None
            if source is None or source.status != ItemStatus.DONE:
                self.log.info(f"{kind.value} generation skipped: item {index} is not done")
                return False
            self._media[kind] = DerivedMediaState(status=MediaStatus.PENDING)
            token = self._next_token(('media', kind))
            epoch = self._epoch

        self.log.info(f"Generating {kind.value} from portrait {index}")
        needs_reauthorization = False
        try:
            if kind == MediaKind.VIDEO:
                result = self.service.generate_styled_video(source.url, prompts.build_video_prompt(config.text))
            else:
                result = self.service.generate_meme_image(source.url, config.text)
            state = DerivedMediaState(status=MediaStatus.DONE, result=result)
        except Exception as e:
            message = str(e)
            if kind == MediaKind.VIDEO and ENTITY_NOT_FOUND in message:
                message = REAUTHORIZE_MESSAGE
                needs_reauthorization = True
            self.log.error(f"{kind.value} generation failed: {message}")
            state = DerivedMediaState(
                status=MediaStatus.ERROR,
                error=message,
                is_quota_error=getattr(e, 'is_quota_error', False)
            )

        with self._lock:
            committed = self._epoch == epoch and self._tokens.get(('media', kind)) == token
            if committed:
                self._media[kind] = state
                if needs_reauthorization:
                    self.reauthorization_required = True
            else:
                self.log.info(f"Discarding stale {kind.value} result")

        # callback runs outside the lock; it may read the session
        if committed and needs_reauthorization and self.on_reauthorization_required:
            self.on_reauthorization_required()
        return True

    def mark_credential_selected(self) -> None:
        """A new API key was chosen: clear the flag and the failed video state."""
        with self._lock:
            self.reauthorization_required = False
            self._media[MediaKind.VIDEO] = DerivedMediaState()
            # any video still in flight was started with the old key
            self._next_token(('media', MediaKind.VIDEO))
        self.log.info("Credential re-selected, video state reset")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_results(self, action: str):
        # caller holds the lock
        if self._state != SessionState.RESULTS_SHOWN:
            raise SessionStateError(f"Cannot {action} in state '{self._state.value}'")

    def _next_token(self, key) -> int:
        # caller holds the lock
        token = self._tokens.get(key, 0) + 1
        self._tokens[key] = token
        return token

    def _commit_item(self, index: int, item: GenerationItem, epoch: int, token: int):
        with self._lock:
            if self._epoch != epoch or self._tokens.get(('item', index)) != token:
                self.log.info(f"Discarding stale result for portrait {index}")
                return
            self._items[index] = item


class SessionStore:
    """In-memory registry of live sessions (nothing survives a restart)."""

    def __init__(self, service=None):
        self.service = service
        self._sessions: dict[str, GenerationSession] = {}
        self._lock = threading.Lock()

    def create(self) -> GenerationSession:
        session = GenerationSession(service=self.service)
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[GenerationSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self):
        with self._lock:
            return len(self._sessions)
