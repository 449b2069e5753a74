import pytest

from logsink import models
from logsink.alert import alert_system
from logsink.alert.alert_system import check_alerts, evaluate_alerts, should_trigger

from conftest import NOW

MINUTE_MS = 60 * 1000


@pytest.fixture
def make_alert(db):
    def _make(app_obj, condition_type, threshold, time_window=15, function_pattern=None,
              is_active=True):
        alert = models.Alert(app_id=app_obj.id, name=f"{condition_type} alert",
                             condition_type=condition_type, threshold=threshold,
                             time_window=time_window, function_pattern=function_pattern,
                             is_active=is_active, owner_id=app_obj.owner_id,
                             trigger_count=0)
        db.add(alert)
        db.commit()
        return alert
    return _make


def fired_ids(db):
    return [f.alert_id for f in evaluate_alerts(db, now=NOW)]


class TestPredicates:
    def test_error_count(self, db, app_obj, add_log, make_alert):
        alert = make_alert(app_obj, "error_count", 2)
        add_log(app_obj, NOW - MINUTE_MS, level="error")
        assert fired_ids(db) == []
        add_log(app_obj, NOW - 2 * MINUTE_MS, level="error")
        assert fired_ids(db) == [alert.id]

    def test_window_excludes_older_logs(self, db, app_obj, add_log, make_alert):
        make_alert(app_obj, "error_count", 1, time_window=5)
        add_log(app_obj, NOW - 6 * MINUTE_MS, level="error")
        assert fired_ids(db) == []

    def test_error_rate(self, db, app_obj, add_log, make_alert):
        alert = make_alert(app_obj, "error_rate", 50)
        add_log(app_obj, NOW - MINUTE_MS, level="error")
        add_log(app_obj, NOW - MINUTE_MS, level="info")
        add_log(app_obj, NOW - MINUTE_MS, level="info")
        assert fired_ids(db) == []
        add_log(app_obj, NOW - MINUTE_MS, level="error")
        assert fired_ids(db) == [alert.id]

    def test_error_rate_never_fires_on_empty_window(self, db, app_obj, make_alert):
        alert = make_alert(app_obj, "error_rate", 0)
        assert fired_ids(db) == []
        assert should_trigger(db, alert, 0, 0, NOW) is False

    def test_no_logs(self, db, app_obj, add_log, make_alert):
        alert = make_alert(app_obj, "no_logs", 0)
        assert fired_ids(db) == [alert.id]
        add_log(app_obj, NOW - MINUTE_MS, level="debug")
        assert fired_ids(db) == []

    def test_function_duration(self, db, app_obj, add_log, make_alert):
        alert = make_alert(app_obj, "function_duration", 1000,
                           function_pattern="interactions:list")
        add_log(app_obj, NOW - MINUTE_MS, source="interactions:list",
                event={"duration": 500})
        add_log(app_obj, NOW - MINUTE_MS, source="other:fn", event={"duration": 5000})
        assert fired_ids(db) == []
        add_log(app_obj, NOW - MINUTE_MS, source="interactions:list",
                event={"duration": 1500})
        assert fired_ids(db) == [alert.id]

    def test_function_duration_pattern_is_literal(self, db, app_obj, add_log, make_alert):
        alert = make_alert(app_obj, "function_duration", 1000, function_pattern="a_b%")
        add_log(app_obj, NOW - MINUTE_MS, source="axbyz", event={"duration": 5000})
        assert fired_ids(db) == []
        add_log(app_obj, NOW - MINUTE_MS, source="jobs/a_b%/run", event={"duration": 5000})
        assert fired_ids(db) == [alert.id]

    def test_function_duration_reads_newest_records_only(self, db, app_obj, add_log,
                                                        make_alert, monkeypatch):
        monkeypatch.setattr(alert_system, "DURATION_SCAN_LIMIT", 1)
        make_alert(app_obj, "function_duration", 1000, function_pattern="fn")
        add_log(app_obj, NOW - 3 * MINUTE_MS, source="fn", event={"duration": 5000})
        add_log(app_obj, NOW - MINUTE_MS, source="fn", event={"duration": 10})
        assert fired_ids(db) == []

    def test_function_duration_without_pattern(self, db, app_obj, make_alert):
        alert = make_alert(app_obj, "function_duration", 1)
        assert should_trigger(db, alert, 10, 0, NOW) is False


class TestEvaluateAlerts:
    def test_bookkeeping(self, db, app_obj, add_log, make_alert):
        alert = make_alert(app_obj, "error_count", 1)
        add_log(app_obj, NOW - MINUTE_MS, level="error")

        evaluate_alerts(db, now=NOW)
        evaluate_alerts(db, now=NOW + MINUTE_MS)

        db.refresh(alert)
        assert alert.trigger_count == 2
        assert alert.last_triggered == NOW + MINUTE_MS

    def test_no_fire_leaves_bookkeeping(self, db, app_obj, make_alert):
        alert = make_alert(app_obj, "error_count", 1)
        evaluate_alerts(db, now=NOW)
        db.refresh(alert)
        assert alert.trigger_count == 0
        assert alert.last_triggered is None

    def test_inactive_rules_and_deleted_apps_are_skipped(self, db, make_app, make_alert):
        live = make_app(name="live")
        gone = make_app(name="gone")
        gone.is_deleted = True
        db.commit()
        make_alert(live, "no_logs", 0, is_active=False)
        make_alert(gone, "no_logs", 0)
        assert fired_ids(db) == []

    def test_failing_rule_is_isolated(self, db, app_obj, make_alert, monkeypatch):
        broken = make_alert(app_obj, "no_logs", 0)
        healthy = make_alert(app_obj, "no_logs", 0)
        real_should_trigger = alert_system.should_trigger

        def flaky(session, alert, *args):
            if alert.id == broken.id:
                raise RuntimeError("boom")
            return real_should_trigger(session, alert, *args)

        monkeypatch.setattr(alert_system, "should_trigger", flaky)
        assert fired_ids(db) == [healthy.id]

    def test_check_alerts_reports_firings(self, db, app_obj, make_alert, monkeypatch):
        alert = make_alert(app_obj, "no_logs", 0)
        sent = []
        monkeypatch.setattr(alert_system, "send_alert", sent.append)

        firings = check_alerts(now=NOW)

        assert [f.alert_id for f in firings] == [alert.id]
        assert sent == firings
        assert firings[0].to_dict()["condition_type"] == "no_logs"
        db.refresh(alert)
        assert alert.trigger_count == 1
