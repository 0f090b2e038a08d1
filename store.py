"""
Durable task and group storage.

Two adapters implement the same contract: an in-memory one used by tests and
single-shot runs, and an SQLAlchemy one backed by SQLite through aiosqlite.
Both serialize every operation behind one asyncio lock, so a submission can
never interleave with the scheduler's claim of the same task.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Collection, Dict, List, Optional

from sqlalchemy import BigInteger, Column, DateTime, Integer, JSON, String, Text, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from config import DATABASE_URL
from errors import StoreError
from models import Group, Subscriber, Task, TaskStatus

logger = logging.getLogger(__name__)

Base = declarative_base()


class TaskStore(ABC):
    """Persistence contract consumed by the task manager."""

    @abstractmethod
    async def submit(self, link: str, group_id: int, status_handle: Optional[int] = None) -> Task:
        """Create a pending task for link or subscribe group to the live one."""

    @abstractmethod
    async def next_pending(self, exclude: Collection[int] = ()) -> Optional[Task]:
        """Oldest pending task not in exclude, or None when nothing is waiting."""

    @abstractmethod
    async def mark_in_progress(self, task_id: int) -> Task:
        """Claim a pending task and return the claimed snapshot."""

    @abstractmethod
    async def revert_to_pending(self, task_id: int) -> None:
        ...

    @abstractmethod
    async def delete(self, task_id: int) -> None:
        ...

    @abstractmethod
    async def get(self, task_id: int) -> Optional[Task]:
        ...

    @abstractmethod
    async def find_by_link(self, link: str) -> Optional[Task]:
        ...

    @abstractmethod
    async def requeue_in_progress(self) -> int:
        """Reset every in-progress task to pending. Returns the number reset."""

    @abstractmethod
    async def activate_group(self, chat_id: int, admin_username: str) -> Group:
        ...

    @abstractmethod
    async def deactivate_group(self, chat_id: int) -> bool:
        ...

    @abstractmethod
    async def get_group(self, chat_id: int) -> Optional[Group]:
        ...

    @abstractmethod
    async def list_groups(self) -> List[Group]:
        ...

    async def close(self) -> None:
        return None


def _copy_task(task: Task) -> Task:
    return Task(id=task.id, link=task.link, subscribers=list(task.subscribers), status=task.status)


class InMemoryTaskStore(TaskStore):
    """Process-local store. Task ids grow monotonically, so id order is creation order."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._tasks: Dict[int, Task] = {}
        self._groups: Dict[int, Group] = {}
        self._counter = 0

    async def submit(self, link: str, group_id: int, status_handle: Optional[int] = None) -> Task:
        async with self._lock:
            task = self._find(link)
            if task is None:
                self._counter += 1
                task = Task(
                    id=self._counter,
                    link=link,
                    subscribers=[Subscriber(group_id, status_handle)],
                )
                self._tasks[task.id] = task
            elif not task.has_group(group_id):
                task.subscribers.append(Subscriber(group_id, status_handle))
            return _copy_task(task)

    async def next_pending(self, exclude: Collection[int] = ()) -> Optional[Task]:
        async with self._lock:
            pending = [
                task
                for task in self._tasks.values()
                if task.status == TaskStatus.PENDING and task.id not in exclude
            ]
            if not pending:
                return None
            return _copy_task(min(pending, key=lambda item: item.id))

    async def mark_in_progress(self, task_id: int) -> Task:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise StoreError(f"task {task_id} not found")
            if task.status != TaskStatus.PENDING:
                raise StoreError(f"task {task_id} is already {task.status.value}")
            task.status = TaskStatus.IN_PROGRESS
            return _copy_task(task)

    async def revert_to_pending(self, task_id: int) -> None:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise StoreError(f"task {task_id} not found")
            task.status = TaskStatus.PENDING

    async def delete(self, task_id: int) -> None:
        async with self._lock:
            if self._tasks.pop(task_id, None) is None:
                raise StoreError(f"task {task_id} not found")

    async def get(self, task_id: int) -> Optional[Task]:
        async with self._lock:
            task = self._tasks.get(task_id)
            return _copy_task(task) if task else None

    async def find_by_link(self, link: str) -> Optional[Task]:
        async with self._lock:
            task = self._find(link)
            return _copy_task(task) if task else None

    async def requeue_in_progress(self) -> int:
        async with self._lock:
            count = 0
            for task in self._tasks.values():
                if task.status == TaskStatus.IN_PROGRESS:
                    task.status = TaskStatus.PENDING
                    count += 1
            return count

    async def activate_group(self, chat_id: int, admin_username: str) -> Group:
        async with self._lock:
            group = self._groups.get(chat_id)
            if group is None:
                group = Group(chat_id=chat_id, admin_username=admin_username)
                self._groups[chat_id] = group
            return Group(group.chat_id, group.admin_username)

    async def deactivate_group(self, chat_id: int) -> bool:
        async with self._lock:
            return self._groups.pop(chat_id, None) is not None

    async def get_group(self, chat_id: int) -> Optional[Group]:
        async with self._lock:
            group = self._groups.get(chat_id)
            return Group(group.chat_id, group.admin_username) if group else None

    async def list_groups(self) -> List[Group]:
        async with self._lock:
            return [Group(item.chat_id, item.admin_username) for item in self._groups.values()]

    def _find(self, link: str) -> Optional[Task]:
        for task in self._tasks.values():
            if task.link == link:
                return task
        return None


class TaskRecord(Base):
    __tablename__ = "tasks"
    # ids are never reused, so id order stays creation order
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    link = Column(Text, nullable=False, unique=True)
    subscribers = Column(JSON, nullable=False, default=list)
    status = Column(String(32), nullable=False, default=TaskStatus.PENDING.value, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class GroupRecord(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(BigInteger, nullable=False, unique=True, index=True)
    admin_username = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


def _dump_subscriber(subscriber: Subscriber) -> Dict[str, Any]:
    return {"group_id": subscriber.group_id, "status_handle": subscriber.status_handle}


def _record_to_task(record: TaskRecord) -> Task:
    return Task(
        id=record.id,
        link=record.link,
        subscribers=[
            Subscriber(group_id=int(item["group_id"]), status_handle=item.get("status_handle"))
            for item in (record.subscribers or [])
        ],
        status=TaskStatus(record.status),
    )


def _record_to_group(record: GroupRecord) -> Group:
    return Group(chat_id=record.chat_id, admin_username=record.admin_username)


class SqlTaskStore(TaskStore):
    """SQLAlchemy adapter. Each call runs in its own transaction."""

    def __init__(self, database_url: str = DATABASE_URL, engine: Optional[AsyncEngine] = None):
        self.engine = engine or create_async_engine(database_url)
        self._session_maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        """Create tables when missing."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as error:
            raise StoreError(f"schema setup failed: {error}") from error
        logger.info("Task store ready (%s)", self.engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._lock:
            try:
                async with self._session_maker() as session:
                    async with session.begin():
                        yield session
            except SQLAlchemyError as error:
                raise StoreError(str(error)) from error

    async def _find_record(self, session: AsyncSession, link: str) -> Optional[TaskRecord]:
        result = await session.execute(select(TaskRecord).where(TaskRecord.link == link))
        return result.scalar_one_or_none()

    async def submit(self, link: str, group_id: int, status_handle: Optional[int] = None) -> Task:
        async with self._transaction() as session:
            record = await self._find_record(session, link)
            if record is None:
                record = TaskRecord(
                    link=link,
                    subscribers=[_dump_subscriber(Subscriber(group_id, status_handle))],
                    status=TaskStatus.PENDING.value,
                )
                session.add(record)
                await session.flush()
            else:
                task = _record_to_task(record)
                if not task.has_group(group_id):
                    # reassign so the JSON column is flagged dirty
                    record.subscribers = [
                        *(record.subscribers or []),
                        _dump_subscriber(Subscriber(group_id, status_handle)),
                    ]
            return _record_to_task(record)

    async def next_pending(self, exclude: Collection[int] = ()) -> Optional[Task]:
        query = select(TaskRecord).where(TaskRecord.status == TaskStatus.PENDING.value)
        if exclude:
            query = query.where(TaskRecord.id.notin_(list(exclude)))
        async with self._transaction() as session:
            result = await session.execute(query.order_by(TaskRecord.id.asc()).limit(1))
            record = result.scalar_one_or_none()
            return _record_to_task(record) if record else None

    async def mark_in_progress(self, task_id: int) -> Task:
        async with self._transaction() as session:
            record = await session.get(TaskRecord, task_id)
            if record is None:
                raise StoreError(f"task {task_id} not found")
            if record.status != TaskStatus.PENDING.value:
                raise StoreError(f"task {task_id} is already {record.status}")
            record.status = TaskStatus.IN_PROGRESS.value
            return _record_to_task(record)

    async def revert_to_pending(self, task_id: int) -> None:
        async with self._transaction() as session:
            record = await session.get(TaskRecord, task_id)
            if record is None:
                raise StoreError(f"task {task_id} not found")
            record.status = TaskStatus.PENDING.value

    async def delete(self, task_id: int) -> None:
        async with self._transaction() as session:
            record = await session.get(TaskRecord, task_id)
            if record is None:
                raise StoreError(f"task {task_id} not found")
            await session.delete(record)

    async def get(self, task_id: int) -> Optional[Task]:
        async with self._transaction() as session:
            record = await session.get(TaskRecord, task_id)
            return _record_to_task(record) if record else None

    async def find_by_link(self, link: str) -> Optional[Task]:
        async with self._transaction() as session:
            record = await self._find_record(session, link)
            return _record_to_task(record) if record else None

    async def requeue_in_progress(self) -> int:
        async with self._transaction() as session:
            result = await session.execute(
                update(TaskRecord)
                .where(TaskRecord.status == TaskStatus.IN_PROGRESS.value)
                .values(status=TaskStatus.PENDING.value)
            )
            return result.rowcount or 0

    async def activate_group(self, chat_id: int, admin_username: str) -> Group:
        async with self._transaction() as session:
            result = await session.execute(select(GroupRecord).where(GroupRecord.chat_id == chat_id))
            record = result.scalar_one_or_none()
            if record is None:
                record = GroupRecord(chat_id=chat_id, admin_username=admin_username)
                session.add(record)
                await session.flush()
            return _record_to_group(record)

    async def deactivate_group(self, chat_id: int) -> bool:
        async with self._transaction() as session:
            result = await session.execute(select(GroupRecord).where(GroupRecord.chat_id == chat_id))
            record = result.scalar_one_or_none()
            if record is None:
                return False
            await session.delete(record)
            return True

    async def get_group(self, chat_id: int) -> Optional[Group]:
        async with self._transaction() as session:
            result = await session.execute(select(GroupRecord).where(GroupRecord.chat_id == chat_id))
            record = result.scalar_one_or_none()
            return _record_to_group(record) if record else None

    async def list_groups(self) -> List[Group]:
        async with self._transaction() as session:
            result = await session.execute(select(GroupRecord).order_by(GroupRecord.id.asc()))
            return [_record_to_group(record) for record in result.scalars().all()]
