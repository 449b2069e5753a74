import pytest
from sqlalchemy.exc import IntegrityError

from logsink import metrics, models
from logsink.ingest.normalizer import FLAG_MARKER
from logsink.metrics import (aggregate_daily_metrics, aggregate_hourly_metrics,
                             get_all_apps_chart_data, get_app_chart_data,
                             trigger_metrics_aggregation)
from logsink.retention import DAY_MS, HOUR_MS

from conftest import HOUR_START


def fill_hour(add_log, app_obj, hour_start):
    add_log(app_obj, hour_start + 1000, level="error")
    add_log(app_obj, hour_start + 2000, level="error")
    add_log(app_obj, hour_start + 3000, level="info")
    add_log(app_obj, hour_start + 4000, level="warn", message=f"{FLAG_MARKER} slow: query")
    add_log(app_obj, hour_start + 5000, level="debug")


class TestHourlyAggregation:
    def test_counts_levels_and_flags(self, db, app_obj, add_log):
        fill_hour(add_log, app_obj, HOUR_START)
        # outside [start, end)
        add_log(app_obj, HOUR_START + HOUR_MS, level="error")
        add_log(app_obj, HOUR_START - 1, level="error")

        result = aggregate_hourly_metrics(db, target_hour=HOUR_START + 10)
        assert result.processed_apps == 1
        assert result.period_start == HOUR_START

        bucket = db.query(models.LogMetric).one()
        assert bucket.period == "hour"
        assert bucket.timestamp == HOUR_START
        assert bucket.total_logs == 5
        assert bucket.error_count == 2
        assert bucket.warn_count == 1
        assert bucket.info_count == 1
        assert bucket.debug_count == 1
        assert bucket.flagged_count == 1
        assert bucket.avg_logs_per_minute == round(5 / 60, 2)

    def test_bucket_written_once(self, db, app_obj, add_log):
        fill_hour(add_log, app_obj, HOUR_START)
        aggregate_hourly_metrics(db, target_hour=HOUR_START)
        add_log(app_obj, HOUR_START + 6000, level="error")

        again = aggregate_hourly_metrics(db, target_hour=HOUR_START)
        assert again.processed_apps == 0
        assert again.skipped_apps == 1
        bucket = db.query(models.LogMetric).one()
        assert bucket.total_logs == 5

    def test_lost_race_counts_as_skip(self, db, app_obj, monkeypatch):
        monkeypatch.setattr(metrics, "_bucket_exists", lambda *args: False)
        aggregate_hourly_metrics(db, target_hour=HOUR_START)
        result = aggregate_hourly_metrics(db, target_hour=HOUR_START)
        assert result.skipped_apps == 1
        assert result.failed_apps == 0
        assert db.query(models.LogMetric).count() == 1

    def test_failure_for_one_app_does_not_stop_others(self, db, make_app, monkeypatch):
        first = make_app(name="first")
        second = make_app(name="second")
        real_bucket = metrics._hour_bucket

        def flaky(session, app_id, start, end):
            if app_id == first.id:
                raise RuntimeError("boom")
            return real_bucket(session, app_id, start, end)

        monkeypatch.setattr(metrics, "_hour_bucket", flaky)
        result = aggregate_hourly_metrics(db, target_hour=HOUR_START)
        assert result.failed_apps == 1
        assert result.processed_apps == 1
        assert [m.app_id for m in db.query(models.LogMetric).all()] == [second.id]

    def test_inactive_and_deleted_apps_are_skipped(self, db, make_app):
        make_app(name="off", is_active=False)
        gone = make_app(name="gone")
        gone.is_deleted = True
        db.commit()
        result = aggregate_hourly_metrics(db, target_hour=HOUR_START)
        assert result.processed_apps == 0
        assert db.query(models.LogMetric).count() == 0

    def test_default_target_is_previous_hour(self, db, app_obj):
        result = aggregate_hourly_metrics(db, now=HOUR_START + 10 * 60 * 1000)
        assert result.period_start == HOUR_START - HOUR_MS

    def test_trigger_covers_complete_hours_only(self, db, app_obj):
        now = HOUR_START + 10 * 60 * 1000
        results = trigger_metrics_aggregation(db, hours_back=3, now=now)
        assert [r.period_start for r in results] == [
            HOUR_START - HOUR_MS, HOUR_START - 2 * HOUR_MS, HOUR_START - 3 * HOUR_MS]


class TestDailyRollup:
    def test_sums_hour_buckets(self, db, app_obj, add_log):
        day_start = (HOUR_START // DAY_MS) * DAY_MS
        fill_hour(add_log, app_obj, day_start)
        fill_hour(add_log, app_obj, day_start + 5 * HOUR_MS)
        aggregate_hourly_metrics(db, target_hour=day_start)
        aggregate_hourly_metrics(db, target_hour=day_start + 5 * HOUR_MS)

        result = aggregate_daily_metrics(db, target_day=day_start)
        assert result.processed_apps == 1
        day = db.query(models.LogMetric).filter(models.LogMetric.period == "day").one()
        assert day.timestamp == day_start
        assert day.total_logs == 10
        assert day.error_count == 4
        assert day.flagged_count == 2
        assert day.avg_logs_per_minute == round(10 / 1440, 2)


class TestChartData:
    def test_app_chart(self, db, app_obj, add_log):
        fill_hour(add_log, app_obj, HOUR_START)
        aggregate_hourly_metrics(db, target_hour=HOUR_START)

        points = get_app_chart_data(db, app_obj.id, hours=24, now=HOUR_START + HOUR_MS)
        assert len(points) == 1
        point = points[0]
        assert point["timestamp"] == HOUR_START
        assert point["hour"] == 22
        assert point["label"] == "10 PM"
        assert point["total_logs"] == 5
        assert point["error_rate"] == 40

    def test_window_excludes_old_buckets(self, db, app_obj):
        db.add(models.LogMetric(app_id=app_obj.id, period="hour",
                                timestamp=HOUR_START - 30 * HOUR_MS))
        db.commit()
        assert get_app_chart_data(db, app_obj.id, hours=24, now=HOUR_START) == []

    def test_all_apps_chart_merges_by_hour(self, db, make_app, add_log):
        first = make_app(name="first")
        second = make_app(name="second")
        fill_hour(add_log, first, HOUR_START)
        add_log(second, HOUR_START + 10, level="info")
        aggregate_hourly_metrics(db, target_hour=HOUR_START)

        points = get_all_apps_chart_data(db, [first.id, second.id], hours=24,
                                         now=HOUR_START + HOUR_MS)
        assert len(points) == 1
        assert points[0]["total_logs"] == 6
        assert points[0]["error_rate"] == 33

    def test_no_apps(self, db):
        assert get_all_apps_chart_data(db, []) == []

    def test_unique_constraint(self, db, app_obj):
        db.add(models.LogMetric(app_id=app_obj.id, period="hour", timestamp=HOUR_START))
        db.commit()
        db.add(models.LogMetric(app_id=app_obj.id, period="hour", timestamp=HOUR_START))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
