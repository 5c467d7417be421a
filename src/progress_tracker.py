"""
Database-backed progress counters for extraction and translation runs.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional, Union

from sqlalchemy import case, delete, func, select, update

from src.database import SessionFactory
from src.models import TaskType, TranslationProgress, utcnow

STATUS_IDLE = 'idle'
STATUS_RUNNING = 'running'
STATUS_COMPLETED = 'completed'


def compute_percentage(completed: int, total: int) -> float:
    if total <= 0:
        return 0
    return round((completed / total) * 100, 1)


def derive_status(completed: int, total: int) -> str:
    if total == 0:
        return STATUS_IDLE
    if completed >= total:
        return STATUS_COMPLETED
    if completed > 0:
        return STATUS_RUNNING
    return STATUS_IDLE


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only view of one progress record, with the derived fields filled in."""
    task_type: str
    locale: Optional[str]
    total: int = 0
    completed: int = 0
    failed: int = 0
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def percentage(self) -> float:
        return compute_percentage(self.completed, self.total)

    @property
    def status(self) -> str:
        return derive_status(self.completed, self.total)

    def to_dict(self) -> dict:
        return {
            'total': self.total,
            'completed': self.completed,
            'failed': self.failed,
            'percentage': self.percentage,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


def _task_value(task_type: Union[TaskType, str]) -> str:
    return TaskType(task_type).value


class ProgressTracker:
    """
    Per (task type, locale) counters updated by workers and read by the operator.

    Increments are single UPDATE statements evaluated by the database, so two
    workers finishing at the same instant cannot lose each other's update, and
    ``completed_at`` is set in the same statement that pushes ``completed``
    past ``total``.
    """

    def __init__(self, session_factory: SessionFactory):
        self._Session = session_factory

    @staticmethod
    def _match(task_type: Union[TaskType, str], locale: Optional[str]):
        locale_clause = TranslationProgress.locale.is_(None) if locale is None else TranslationProgress.locale == locale
        return TranslationProgress.type == _task_value(task_type), locale_clause

    def start_batch(self, task_type: Union[TaskType, str], locale: Optional[str], total: int) -> None:
        """Create or reset the record for a new batch of work."""
        now = utcnow()
        session = self._Session()
        try:
            session.execute(delete(TranslationProgress).where(*self._match(task_type, locale)))
            session.add(TranslationProgress(
                type=_task_value(task_type),
                locale=locale,
                total=total,
                completed=0,
                failed=0,
                started_at=now,
                updated_at=now,
                completed_at=None,
            ))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def increment_completed(self, task_type: Union[TaskType, str], locale: Optional[str], n: int = 1) -> bool:
        """
        Add ``n`` to ``completed``; stamps ``completed_at`` the first time the total is reached.

        Returns:
            False when no record exists for this task (nothing to update).
        """
        now = utcnow()
        new_completed = TranslationProgress.completed + n
        stmt = (
            update(TranslationProgress)
            .where(*self._match(task_type, locale))
            .values(
                completed=new_completed,
                updated_at=now,
                completed_at=case(
                    (
                        new_completed >= TranslationProgress.total,
                        func.coalesce(TranslationProgress.completed_at, now),
                    ),
                    else_=None,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        return self._execute_update(stmt)

    def increment_failed(self, task_type: Union[TaskType, str], locale: Optional[str], n: int = 1) -> bool:
        now = utcnow()
        stmt = (
            update(TranslationProgress)
            .where(*self._match(task_type, locale))
            .values(failed=TranslationProgress.failed + n, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self._execute_update(stmt)

    def _execute_update(self, stmt) -> bool:
        session = self._Session()
        try:
            result = session.execute(stmt)
            session.commit()
            return (result.rowcount or 0) > 0
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, task_type: Union[TaskType, str], locale: Optional[str] = None) -> ProgressSnapshot:
        """Snapshot of one record; an all-zero idle snapshot when none exists."""
        session = self._Session()
        try:
            record = session.scalars(
                select(TranslationProgress).where(*self._match(task_type, locale))
            ).first()
        finally:
            session.close()

        if record is None:
            return ProgressSnapshot(task_type=_task_value(task_type), locale=locale)
        return ProgressSnapshot(
            task_type=record.type,
            locale=record.locale,
            total=record.total,
            completed=record.completed,
            failed=record.failed,
            started_at=record.started_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
        )

    def overview(self, locales: Iterable[str]) -> Dict[str, object]:
        """Extraction progress plus translation progress for each given locale."""
        return {
            'extraction': self.get(TaskType.EXTRACTION, None),
            'translation': {locale: self.get(TaskType.TRANSLATION, locale) for locale in locales},
        }

    def reset_all(self) -> int:
        session = self._Session()
        try:
            result = session.execute(delete(TranslationProgress))
            session.commit()
            return result.rowcount or 0
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
