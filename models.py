"""
Data models for the task pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple, Union


class TaskStatus(Enum):
    """Persisted task states. Finished tasks are deleted, not transitioned."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"


class MediaKind(Enum):
    """Coarse media kind used to pick an upload method."""

    VIDEO = "video"
    IMAGE = "image"
    AUDIO = "audio"


class LifecycleState(Enum):
    """Run state of the task manager."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class LinkPattern:
    """One row of the supported-links table."""

    name: str
    pattern: str
    example: str


@dataclass(frozen=True)
class Subscriber:
    """A group waiting for a task outcome, with its optional status message id."""

    group_id: int
    status_handle: Optional[int] = None


@dataclass
class Task:
    """One de-duplicated download-and-distribute job keyed by link."""

    id: int
    link: str
    subscribers: List[Subscriber] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING

    @property
    def group_ids(self) -> List[int]:
        return [subscriber.group_id for subscriber in self.subscribers]

    def has_group(self, group_id: int) -> bool:
        return group_id in self.group_ids


@dataclass
class Group:
    """A chat authorized to receive media."""

    chat_id: int
    admin_username: str


@dataclass
class MediaFile:
    file_path: str
    file_name: str
    file_size: int
    kind: MediaKind = MediaKind.VIDEO


@dataclass
class FetchResult:
    """Outcome of one media fetch."""

    success: bool
    files: List[MediaFile] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def total_size(self) -> int:
        return sum(item.file_size for item in self.files)


@dataclass(frozen=True)
class UploadStarted:
    group_id: int
    status_handle: Optional[int] = None


@dataclass(frozen=True)
class ProcessSuccess:
    group_id: int
    status_handle: Optional[int] = None
    file_names: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProcessFailure:
    group_id: int
    error_message: str
    status_handle: Optional[int] = None


OutcomeEvent = Union[UploadStarted, ProcessSuccess, ProcessFailure]


@dataclass
class SystemInfo:
    """Host load snapshot shown to admins. Fields stay None when unavailable."""

    collected_at: datetime
    hostname: Optional[str] = None
    os_name: Optional[str] = None
    os_release: Optional[str] = None
    architecture: Optional[str] = None
    uptime_seconds: Optional[float] = None
    cpu_model: Optional[str] = None
    physical_cores: Optional[int] = None
    logical_cores: Optional[int] = None
    cpu_percent: Optional[float] = None
    memory_total: Optional[int] = None
    memory_used: Optional[int] = None
    memory_available: Optional[int] = None
    memory_percent: Optional[float] = None
    swap_total: Optional[int] = None
    swap_used: Optional[int] = None
    swap_percent: Optional[float] = None
    errors: List[str] = field(default_factory=list)
