from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from unittest.mock import patch

import pytest

from src.models import TaskType
from src.progress_tracker import compute_percentage, derive_status


class TestDerivedFields:

    @pytest.mark.parametrize("completed,total,expected", [
        (0, 0, 0),
        (5, 0, 0),
        (1, 3, 33.3),
        (2, 3, 66.7),
        (3, 3, 100.0),
        (4, 3, 133.3),
    ])
    def test_percentage(self, completed, total, expected):
        assert compute_percentage(completed, total) == expected

    @pytest.mark.parametrize("completed,total,expected", [
        (0, 0, 'idle'),
        (0, 5, 'idle'),
        (2, 5, 'running'),
        (5, 5, 'completed'),
        (6, 5, 'completed'),
    ])
    def test_status(self, completed, total, expected):
        assert derive_status(completed, total) == expected


class TestProgressTracker:

    def test_unknown_record_is_idle(self, progress):
        snapshot = progress.get(TaskType.TRANSLATION, "es")
        assert (snapshot.total, snapshot.completed, snapshot.failed) == (0, 0, 0)
        assert snapshot.status == 'idle'
        assert snapshot.percentage == 0

    def test_start_batch_resets_counters(self, progress):
        progress.start_batch(TaskType.EXTRACTION, None, 3)
        progress.increment_completed(TaskType.EXTRACTION, None, 3)
        progress.increment_failed(TaskType.EXTRACTION, None, 1)

        progress.start_batch(TaskType.EXTRACTION, None, 10)

        snapshot = progress.get(TaskType.EXTRACTION)
        assert (snapshot.total, snapshot.completed, snapshot.failed) == (10, 0, 0)
        assert snapshot.started_at is not None
        assert snapshot.completed_at is None

    def test_completed_at_is_set_with_the_final_increment(self, progress):
        progress.start_batch(TaskType.TRANSLATION, "es", 5)

        progress.increment_completed(TaskType.TRANSLATION, "es", 2)
        running = progress.get(TaskType.TRANSLATION, "es")
        assert running.status == 'running'
        assert running.completed_at is None

        progress.increment_completed(TaskType.TRANSLATION, "es", 3)
        done = progress.get(TaskType.TRANSLATION, "es")
        assert done.status == 'completed'
        assert done.percentage == 100.0
        assert done.completed_at is not None

    def test_late_increments_keep_the_first_completion_time(self, progress):
        progress.start_batch(TaskType.TRANSLATION, "es", 1)
        progress.increment_completed(TaskType.TRANSLATION, "es", 1)
        first_completed_at = progress.get(TaskType.TRANSLATION, "es").completed_at

        with patch('src.progress_tracker.utcnow', return_value=datetime(2099, 1, 1)):
            progress.increment_completed(TaskType.TRANSLATION, "es", 1)

        snapshot = progress.get(TaskType.TRANSLATION, "es")
        assert snapshot.completed == 2
        assert snapshot.completed_at == first_completed_at

    def test_failures_do_not_complete_a_batch(self, progress):
        progress.start_batch(TaskType.TRANSLATION, "es", 2)
        progress.increment_failed(TaskType.TRANSLATION, "es", 2)

        snapshot = progress.get(TaskType.TRANSLATION, "es")
        assert snapshot.failed == 2
        assert snapshot.status == 'idle'
        assert snapshot.completed_at is None

    def test_locales_are_tracked_separately(self, progress):
        progress.start_batch(TaskType.TRANSLATION, "es", 2)
        progress.start_batch(TaskType.TRANSLATION, "fr", 4)
        progress.increment_completed(TaskType.TRANSLATION, "fr", 1)

        assert progress.get(TaskType.TRANSLATION, "es").completed == 0
        assert progress.get(TaskType.TRANSLATION, "fr").completed == 1

    def test_increment_without_record_reports_no_update(self, progress):
        assert progress.increment_completed(TaskType.TRANSLATION, "de", 1) is False

    def test_concurrent_increments_are_not_lost(self, progress):
        total = 30
        progress.start_batch(TaskType.EXTRACTION, None, total)
        with ThreadPoolExecutor(max_workers=6) as executor:
            list(executor.map(lambda _: progress.increment_completed(TaskType.EXTRACTION, None, 1), range(total)))

        snapshot = progress.get(TaskType.EXTRACTION)
        assert snapshot.completed == total
        assert snapshot.status == 'completed'
        assert snapshot.completed_at is not None

    def test_overview_and_reset_all(self, progress):
        progress.start_batch(TaskType.EXTRACTION, None, 1)
        progress.start_batch(TaskType.TRANSLATION, "es", 1)

        overview = progress.overview(["es", "fr"])
        assert overview['extraction'].total == 1
        assert overview['translation']['es'].total == 1
        assert overview['translation']['fr'].total == 0

        assert progress.reset_all() == 2
        assert progress.get(TaskType.EXTRACTION).total == 0

    def test_snapshot_to_dict(self, progress):
        progress.start_batch(TaskType.TRANSLATION, "es", 4)
        progress.increment_completed(TaskType.TRANSLATION, "es", 1)

        data = progress.get(TaskType.TRANSLATION, "es").to_dict()
        assert data['total'] == 4
        assert data['completed'] == 1
        assert data['percentage'] == 25.0
        assert data['status'] == 'running'
        assert data['completed_at'] is None
        assert isinstance(data['started_at'], str)
