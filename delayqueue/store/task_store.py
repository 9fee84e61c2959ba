# delayqueue/store/task_store.py
"""
SQLAlchemy task store - durable system of record for scheduled tasks.

start() and end() are single conditional UPDATE statements, so the database
performs the compare-and-set on the current state at row level:
- start() only moves rows that are still READY
- end() never rewrites a row that already reached a terminal state
"""

import logging
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import StoreUnavailableError
from ..lifecycle.state_machine import TaskState, TERMINAL_STATES
from ..models import DelayTask, utcnow

logger = logging.getLogger("delayqueue.store")

_TERMINAL_VALUES = [state.value for state in TERMINAL_STATES]


class TaskStore:
    """
    Task store bound to a session factory.

    Every operation opens and closes its own session, so one store is shared by
    all dispatcher threads of a process. Returned records are detached copies.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Task store {operation} failed: {e}")
            raise StoreUnavailableError(operation, e) from e
        finally:
            db.close()

    # =========================================================================
    # Task store contract
    # =========================================================================

    def add(self, tasks: Union[DelayTask, Sequence[DelayTask]]) -> None:
        """Insert one record or a batch in a single transaction"""
        records = [tasks] if isinstance(tasks, DelayTask) else list(tasks)
        if not records:
            return
        with self._session("add") as db:
            db.add_all(records)
        logger.debug(f"Stored {len(records)} task(s)")

    def find(self, task_id: str) -> Optional[DelayTask]:
        with self._session("find") as db:
            return db.get(DelayTask, task_id)

    def start(self, task: DelayTask) -> int:
        """
        Move a READY row to RUNNING, stamping start_time.
        Returns affected rows: 0 means another process already progressed it.
        """
        start_time = task.start_time or utcnow()
        with self._session("start") as db:
            changed = db.execute(
                update(DelayTask)
                .where(DelayTask.task_id == task.task_id, DelayTask.state == TaskState.READY.value)
                .values(state=TaskState.RUNNING.value, start_time=start_time, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount

        if changed:
            task.state = TaskState.RUNNING.value
            task.start_time = start_time
        return changed

    def end(self, task: DelayTask) -> int:
        """
        Persist the terminal state, result and end_time of a task.
        Rows already in a terminal state are left untouched.
        """
        with self._session("end") as db:
            changed = db.execute(
                update(DelayTask)
                .where(DelayTask.task_id == task.task_id, DelayTask.state.notin_(_TERMINAL_VALUES))
                .values(
                    state=task.state,
                    result=task.result,
                    end_time=task.end_time or utcnow(),
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            ).rowcount

        if not changed:
            logger.warning(f"Task {task.task_id} already terminal, {task.state} not recorded")
        return changed

    def cancel_tasks(self, reason: str, task_ids: Iterable[str]) -> int:
        """Cancel the listed tasks that are still READY; returns the number cancelled"""
        ids = list(task_ids)
        if not ids:
            return 0
        now = utcnow()
        with self._session("cancel_tasks") as db:
            return db.execute(
                update(DelayTask)
                .where(DelayTask.task_id.in_(ids), DelayTask.state == TaskState.READY.value)
                .values(state=TaskState.CANCELLED.value, result=reason, end_time=now, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount

    def list_ready(self) -> List[DelayTask]:
        """All READY records, used to rebuild the claim queue"""
        with self._session("list_ready") as db:
            return list(db.scalars(
                select(DelayTask)
                .where(DelayTask.state == TaskState.READY.value)
                .order_by(DelayTask.run_at)
            ))

    # =========================================================================
    # Inspection
    # =========================================================================

    def list_tasks(self, state: Optional[TaskState] = None, limit: int = 100) -> List[DelayTask]:
        """Most recently created tasks first, optionally filtered by state"""
        query = select(DelayTask)
        if state is not None:
            query = query.where(DelayTask.state == TaskState(state).value)
        query = query.order_by(DelayTask.created_at.desc()).limit(limit)
        with self._session("list_tasks") as db:
            return list(db.scalars(query))

    def count_by_state(self) -> Dict[str, int]:
        with self._session("count_by_state") as db:
            rows = db.execute(
                select(DelayTask.state, func.count()).group_by(DelayTask.state)
            ).all()
        counts = {state.value: 0 for state in TaskState}
        counts.update({state: int(count) for state, count in rows})
        return counts

    def ping(self) -> bool:
        with self._session("ping") as db:
            db.execute(text("SELECT 1"))
        return True
