"""
Unit tests for pipeline data models.
"""

from models import (
    FetchResult,
    LifecycleState,
    MediaFile,
    MediaKind,
    ProcessFailure,
    ProcessSuccess,
    Subscriber,
    Task,
    TaskStatus,
)


def test_task_defaults():
    task = Task(id=1, link="https://youtube.com/watch?v=abc")
    assert task.status == TaskStatus.PENDING
    assert task.subscribers == []
    assert task.group_ids == []


def test_task_group_helpers_keep_subscription_order():
    task = Task(
        id=1,
        link="https://youtube.com/watch?v=abc",
        subscribers=[Subscriber(30, 1), Subscriber(10), Subscriber(20, 5)],
    )
    assert task.group_ids == [30, 10, 20]
    assert task.has_group(10)
    assert not task.has_group(40)


def test_task_status_enum_values():
    assert TaskStatus.PENDING.value == "pending"
    assert TaskStatus.IN_PROGRESS.value == "in_progress"
    assert len(TaskStatus) == 2


def test_lifecycle_state_values():
    assert [state.value for state in LifecycleState] == ["stopped", "starting", "running", "stopping"]


def test_fetch_result_total_size():
    result = FetchResult(
        success=True,
        files=[
            MediaFile("/tmp/a.mp4", "a.mp4", 100, MediaKind.VIDEO),
            MediaFile("/tmp/b.jpg", "b.jpg", 50, MediaKind.IMAGE),
        ],
    )
    assert result.total_size == 150
    assert FetchResult(success=False).total_size == 0


def test_outcome_events_carry_group_and_handle():
    success = ProcessSuccess(group_id=-100, status_handle=7, file_names=("a.mp4",))
    failure = ProcessFailure(group_id=-100, error_message="Download failed: boom")
    assert success.status_handle == 7
    assert failure.status_handle is None
    assert failure.error_message.startswith("Download failed")
