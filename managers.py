"""
Task manager: submission, scheduling and the worker pool.
"""

import asyncio
import logging
from typing import List, Optional, Set

from config import (
    MEDIA_OUTPUT_DIR,
    TASK_POLLING_INTERVAL,
    TASK_TIMEOUT_SECONDS,
    WORK_QUEUE_SIZE,
    WORKER_COUNT,
)
from errors import FetchError, PublishError, StoreError, ValidationError
from events import OutcomeEventBus
from fetcher import MediaFetcher
from models import (
    FetchResult,
    LifecycleState,
    MediaFile,
    ProcessFailure,
    ProcessSuccess,
    Task,
    UploadStarted,
)
from publisher import MediaPublisher
from store import TaskStore
from utils import remove_files, validate_link

logger = logging.getLogger(__name__)


class TaskManager:
    """
    Turns submitted links into executed tasks.

    One scheduler task polls the store every ``polling_interval`` seconds and
    moves pending tasks onto a bounded work queue; ``worker_count`` workers
    take one task at a time and run validate, fetch, publish, cleanup, delete
    and notify. Outcomes go to the event bus.
    """

    def __init__(
        self,
        store: TaskStore,
        fetcher: MediaFetcher,
        publisher: MediaPublisher,
        event_bus: OutcomeEventBus,
        worker_count: int = WORKER_COUNT,
        polling_interval: float = TASK_POLLING_INTERVAL,
        queue_size: int = WORK_QUEUE_SIZE,
        task_timeout: float = TASK_TIMEOUT_SECONDS,
        output_dir: str = MEDIA_OUTPUT_DIR,
    ):
        self.store = store
        self.fetcher = fetcher
        self.publisher = publisher
        self.event_bus = event_bus
        self.worker_count = max(1, worker_count)
        self.polling_interval = polling_interval
        self.task_timeout = task_timeout
        self.output_dir = output_dir

        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_size))
        self.lock = asyncio.Lock()
        self.state = LifecycleState.STOPPED
        self.processing = 0

        self._stop_event = asyncio.Event()
        self._workers: List[asyncio.Task] = []
        self._scheduler: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.state == LifecycleState.RUNNING

    async def submit(self, link: str, group_id: int, status_handle: Optional[int] = None) -> Task:
        """Create a task for link or subscribe group to the live one."""
        task = await self.store.submit(link, group_id, status_handle)
        logger.debug("Task %s for %s now has groups %s", task.id, task.link, task.group_ids)
        return task

    async def start(self) -> None:
        async with self.lock:
            if self.state != LifecycleState.STOPPED:
                return
            self.state = LifecycleState.STARTING
            self._stop_event = asyncio.Event()

            try:
                recovered = await self.store.requeue_in_progress()
            except StoreError as error:
                logger.warning("Could not requeue orphaned tasks: %s", error)
            else:
                if recovered:
                    logger.info("Returned %s orphaned in-progress tasks to pending", recovered)

            self._workers = [
                asyncio.create_task(self._worker_loop(idx), name=f"media-worker-{idx}")
                for idx in range(self.worker_count)
            ]
            self._scheduler = asyncio.create_task(self._scheduler_loop(), name="task-scheduler")
            self.state = LifecycleState.RUNNING
            logger.info("Task manager started with %s workers", self.worker_count)

    async def stop(self) -> None:
        """Stop dispatching and wait for in-flight tasks to finish."""
        async with self.lock:
            if self.state != LifecycleState.RUNNING:
                return
            self.state = LifecycleState.STOPPING
            self._stop_event.set()

            loops = [*self._workers, *([self._scheduler] if self._scheduler else [])]
            for result in await asyncio.gather(*loops, return_exceptions=True):
                if isinstance(result, Exception):
                    logger.error("Pipeline loop ended with error", exc_info=result)

            await self._release_queued()
            self._workers = []
            self._scheduler = None
            self.state = LifecycleState.STOPPED
            logger.info("Task manager stopped")

    def queue_size(self) -> int:
        return self.queue.qsize()

    def active_count(self) -> int:
        return self.processing

    async def _scheduler_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.polling_interval)
            except asyncio.TimeoutError:
                try:
                    await self.schedule_available_tasks()
                except Exception:
                    logger.exception("Scheduler tick failed")

    async def schedule_available_tasks(self) -> int:
        """
        One scheduler tick: claim pending tasks oldest first and enqueue them
        until the store is drained or the work queue is full.
        """
        dispatched = 0
        skipped: Set[int] = set()
        while not self._stop_event.is_set():
            try:
                task = await self.store.next_pending(exclude=skipped)
            except StoreError as error:
                logger.warning("Could not query pending tasks: %s", error)
                break
            if task is None:
                break

            try:
                claimed = await self.store.mark_in_progress(task.id)
            except StoreError as error:
                logger.warning("Failed to mark task %s as in progress: %s", task.id, error)
                skipped.add(task.id)
                continue

            try:
                self.queue.put_nowait(claimed)
            except asyncio.QueueFull:
                logger.debug("Work queue is full, task %s goes back to pending", claimed.id)
                try:
                    await self.store.revert_to_pending(claimed.id)
                except StoreError as error:
                    logger.warning("Task %s stays in progress until restart: %s", claimed.id, error)
                break

            dispatched += 1
            logger.debug("Queued task %s for groups %s", claimed.id, claimed.group_ids)

        if dispatched:
            logger.debug("Scheduler tick dispatched %s tasks", dispatched)
        return dispatched

    async def _next_task(self) -> Optional[Task]:
        """Wait for queued work or the stop signal, whichever comes first."""
        getter = asyncio.ensure_future(self.queue.get())
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        return None

    async def _worker_loop(self, worker_id: int) -> None:
        while not self._stop_event.is_set():
            task = await self._next_task()
            if task is None:
                break

            self.processing += 1
            logger.debug("Worker %s took task %s", worker_id, task.id)
            try:
                await self.process_task(task)
            except Exception:
                logger.exception("Unexpected worker error (worker=%s task=%s)", worker_id, task.id)
            finally:
                self.processing -= 1
                self.queue.task_done()

    async def process_task(self, task: Task) -> None:
        """Run one task to its terminal outcome."""
        try:
            file_names = await self._execute(task)
        except ValidationError as error:
            reason = f"Invalid URL: {error}"
        except FetchError as error:
            reason = f"Download failed: {error}"
        except Exception as error:
            logger.exception("Unexpected error while processing task %s", task.id)
            reason = f"Download failed: {error}"
        else:
            await self._handle_success(task, file_names)
            return
        await self._handle_failure(task, reason)

    async def _execute(self, task: Task) -> List[str]:
        platform = validate_link(task.link)
        logger.debug("Processing %s media: %s", platform, task.link)

        result = await self._fetch(task.link)
        try:
            uploaded = await self._publish_all(task, result.files)
        finally:
            leftovers = await remove_files(result.files)
            if leftovers:
                logger.warning("Task %s left files behind: %s", task.id, leftovers)

        logger.debug("Task %s uploaded to %s of %s groups", task.id, uploaded, len(task.subscribers))
        return [item.file_name for item in result.files]

    async def _fetch(self, link: str) -> FetchResult:
        try:
            result = await asyncio.wait_for(
                self.fetcher.fetch(link, self.output_dir),
                timeout=self.task_timeout,
            )
        except asyncio.TimeoutError:
            raise FetchError(f"timed out after {self.task_timeout}s") from None

        if not result.success:
            await remove_files(result.files)
            raise FetchError(result.error or "unknown error")
        if not result.files:
            raise FetchError("no media files produced")
        return result

    async def _publish_all(self, task: Task, files: List[MediaFile]) -> int:
        """Upload to every subscriber in order. Per-group failures are logged only."""
        uploaded = 0
        for subscriber in task.subscribers:
            self.event_bus.try_send(UploadStarted(subscriber.group_id, subscriber.status_handle))
            try:
                await asyncio.wait_for(
                    self.publisher.publish(files, subscriber.group_id),
                    timeout=self.task_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Upload of task %s to group %s timed out", task.id, subscriber.group_id)
            except PublishError as error:
                logger.warning("Failed to upload task %s to group %s: %s", task.id, subscriber.group_id, error)
            except Exception:
                logger.exception("Unexpected error uploading task %s to group %s", task.id, subscriber.group_id)
            else:
                uploaded += 1
        return uploaded

    async def _delete_task(self, task: Task) -> None:
        try:
            await self.store.delete(task.id)
        except StoreError as error:
            logger.warning("Failed to delete task %s: %s", task.id, error)

    async def _handle_success(self, task: Task, file_names: List[str]) -> None:
        await self._delete_task(task)
        for subscriber in task.subscribers:
            self.event_bus.try_send(
                ProcessSuccess(
                    group_id=subscriber.group_id,
                    status_handle=subscriber.status_handle,
                    file_names=tuple(file_names),
                )
            )
        logger.info("Task %s done for groups %s: %s", task.id, task.group_ids, ", ".join(file_names))

    async def _handle_failure(self, task: Task, reason: str) -> None:
        await self._delete_task(task)
        for subscriber in task.subscribers:
            self.event_bus.try_send(
                ProcessFailure(
                    group_id=subscriber.group_id,
                    error_message=reason,
                    status_handle=subscriber.status_handle,
                )
            )
        logger.warning("Task %s failed for groups %s: %s", task.id, task.group_ids, reason)

    async def _release_queued(self) -> None:
        """Return tasks that were queued but never started to pending."""
        while True:
            try:
                task = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.queue.task_done()
            try:
                await self.store.revert_to_pending(task.id)
            except StoreError as error:
                logger.warning("Task %s stays in progress until restart: %s", task.id, error)
