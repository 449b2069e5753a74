from logsink import models
from logsink.retention import DAY_MS, HOUR_MS, cleanup_old_logs, cleanup_old_metrics

from conftest import NOW


class TestCleanupOldLogs:
    def test_level_dependent_cutoffs(self, db, app_obj, add_log):
        old_info, _ = add_log(app_obj, NOW - 80 * HOUR_MS, level="info")
        old_error, _ = add_log(app_obj, NOW - 10 * DAY_MS, level="error")
        fresh, _ = add_log(app_obj, NOW - HOUR_MS, level="debug")

        result = cleanup_old_logs(db, now=NOW, normal_hours=72, error_days=14)

        assert result.deleted_normal == 1
        assert result.deleted_error == 0
        assert result.deleted_summaries == 1
        assert result.has_more is False
        remaining = {log.id for log in db.query(models.Log).all()}
        assert remaining == {old_error.id, fresh.id}
        assert db.query(models.LogSummary).count() == 2

    def test_error_records_expire_after_error_window(self, db, app_obj, add_log):
        add_log(app_obj, NOW - 15 * DAY_MS, level="error")
        result = cleanup_old_logs(db, now=NOW, normal_hours=72, error_days=14)
        assert result.deleted_error == 1
        assert db.query(models.Log).count() == 0
        assert db.query(models.LogSummary).count() == 0

    def test_repeated_calls_shrink_to_zero(self, db, app_obj, add_log):
        for i in range(3):
            add_log(app_obj, NOW - (100 + i) * HOUR_MS)

        first = cleanup_old_logs(db, now=NOW, batch_size=2)
        second = cleanup_old_logs(db, now=NOW, batch_size=2)
        third = cleanup_old_logs(db, now=NOW, batch_size=2)

        assert (first.deleted_count, first.has_more) == (2, True)
        assert (second.deleted_count, second.has_more) == (1, False)
        assert (third.deleted_count, third.has_more) == (0, False)

    def test_dangling_summaries_are_purged(self, db, app_obj, add_log):
        log, summary = add_log(app_obj, NOW - 80 * HOUR_MS)
        # simulate a crash between the two physical deletes
        db.query(models.Log).filter(models.Log.id == log.id).delete(
            synchronize_session=False)
        db.commit()

        result = cleanup_old_logs(db, now=NOW)
        assert result.deleted_logs == 0
        assert result.deleted_orphans == 1
        assert result.deleted_count == 1
        assert db.query(models.LogSummary).count() == 0

    def test_recent_dangling_summary_waits_for_cutoff(self, db, app_obj, add_log):
        log, _ = add_log(app_obj, NOW - HOUR_MS)
        db.query(models.Log).filter(models.Log.id == log.id).delete(
            synchronize_session=False)
        db.commit()
        assert cleanup_old_logs(db, now=NOW).deleted_orphans == 0
        assert db.query(models.LogSummary).count() == 1

    def test_scoped_to_app_ids(self, db, make_app, add_log):
        mine = make_app(name="mine")
        theirs = make_app(name="theirs", owner="user-2")
        add_log(mine, NOW - 80 * HOUR_MS)
        add_log(theirs, NOW - 80 * HOUR_MS)

        result = cleanup_old_logs(db, now=NOW, app_ids=[mine.id])
        assert result.deleted_logs == 1
        assert [log.app_id for log in db.query(models.Log).all()] == [theirs.id]


class TestCleanupOldMetrics:
    def test_deletes_buckets_past_retention(self, db, app_obj):
        for ts in (NOW - 100 * DAY_MS, NOW - 95 * DAY_MS, NOW - DAY_MS):
            db.add(models.LogMetric(app_id=app_obj.id, period="hour", timestamp=ts))
        db.commit()

        result = cleanup_old_metrics(db, now=NOW, retention_days=90, batch_size=1)
        assert (result.deleted_count, result.has_more) == (1, True)
        result = cleanup_old_metrics(db, now=NOW, retention_days=90, batch_size=1)
        assert (result.deleted_count, result.has_more) == (1, True)
        result = cleanup_old_metrics(db, now=NOW, retention_days=90, batch_size=1)
        assert (result.deleted_count, result.has_more) == (0, False)
        assert db.query(models.LogMetric).count() == 1
