"""
Session data models
"""
from enum import Enum
from dataclasses import dataclass
from typing import Any, Optional

SOURCE_SLOTS = ('subject', 'object', 'style')


class SessionState(str, Enum):
    IDLE = 'idle'                    # no source images
    READY = 'ready'                  # at least one source image
    GENERATING = 'generating'        # full run in flight
    RESULTS_SHOWN = 'results-shown'  # full run finished, successfully or not


class ItemStatus(str, Enum):
    PENDING = 'pending'
    DONE = 'done'
    ERROR = 'error'


class MediaStatus(str, Enum):
    IDLE = 'idle'
    PENDING = 'pending'
    DONE = 'done'
    ERROR = 'error'


class MediaKind(str, Enum):
    VIDEO = 'video'
    MEME = 'meme'


@dataclass(frozen=True)
class SourceImageSet:
    """Three independently optional groups of image data URLs."""
    subject: tuple = ()
    object: tuple = ()
    style: tuple = ()

    def replace(self, slot: str, images) -> 'SourceImageSet':
        if slot not in SOURCE_SLOTS:
            raise ValueError(f"Unknown source slot: {slot!r} (expected one of {', '.join(SOURCE_SLOTS)})")
        values = {name: getattr(self, name) for name in SOURCE_SLOTS}
        values[slot] = tuple(images)
        return SourceImageSet(**values)

    def get(self, slot: str) -> tuple:
        if slot not in SOURCE_SLOTS:
            raise ValueError(f"Unknown source slot: {slot!r}")
        return getattr(self, slot)

    @property
    def is_empty(self) -> bool:
        return not (self.subject or self.object or self.style)

    def counts(self) -> dict:
        return {name: len(getattr(self, name)) for name in SOURCE_SLOTS}


@dataclass(frozen=True)
class GenerationItem:
    """One generated portrait slot. Replaced wholesale on every transition."""
    status: ItemStatus = ItemStatus.PENDING
    url: Optional[str] = None
    error: Optional[str] = None
    is_quota_error: bool = False

    @classmethod
    def pending(cls) -> 'GenerationItem':
        return cls(status=ItemStatus.PENDING)

    @classmethod
    def done(cls, url: str) -> 'GenerationItem':
        return cls(status=ItemStatus.DONE, url=url)

    @classmethod
    def failed(cls, message: str, is_quota_error: bool = False) -> 'GenerationItem':
        return cls(status=ItemStatus.ERROR, error=message or 'Generation Failed', is_quota_error=is_quota_error)

    def to_dict(self) -> dict:
        data = {'status': self.status.value}
        if self.status == ItemStatus.DONE:
            data['url'] = self.url
        elif self.status == ItemStatus.ERROR:
            data['error'] = self.error
            data['is_quota_error'] = self.is_quota_error
        return data


@dataclass(frozen=True)
class DerivedMediaState:
    status: MediaStatus = MediaStatus.IDLE
    result: Any = None  # data URL for memes, GeneratedVideo for videos
    error: Optional[str] = None
    is_quota_error: bool = False


@dataclass
class DerivedMediaConfig:
    """Which completed item to derive from, plus the motion prompt or caption."""
    source_index: int = 0
    text: str = ''


@dataclass
class SessionSnapshot:
    """Read-only view handed to the presentation layer."""
    session_id: str
    state: SessionState
    source_counts: dict
    scenarios: list
    items: list
    video: DerivedMediaState
    meme: DerivedMediaState
    video_config: DerivedMediaConfig
    meme_config: DerivedMediaConfig
    reauthorization_required: bool = False
