import logging

import requests

from fk_copy import alerts
from fk_copy.TableSpec import STATUS_SKIPPED_MISSING, CopyStats
from fk_copy.alerts import MAX_MESSAGE_CHARS, format_run_alert, send_discord_alert
from fk_copy.exceptions import FatalTableError
from fk_copy.report import CopyReport


def _report(**accounts):
    r = CopyReport(source_db="exim_invoicing", target_db="leo_munimji")
    r.add(CopyStats(table="gst_rates", status=STATUS_SKIPPED_MISSING))
    r.add(CopyStats(table="accounts", rows_read=50, rows_inserted=40, rows_skipped=10,
                    rows_in_target_after=50, **accounts))
    return r


def test_totals_and_summary():
    r = _report(fk_nullified_count=3)
    r.finish()
    assert r.ok
    assert r.totals() == {
        "tables_processed": 2,
        "tables_skipped": 1,
        "rows_read": 50,
        "rows_inserted": 40,
        "rows_skipped": 10,
        "fk_nullified_count": 3,
        "row_errors": 0,
    }
    lines = r.summary_lines()
    assert "gst_rates: skipped — does not exist" in lines[1]
    assert "accounts: read=50 inserted=40 skipped=10 fk_nullified=3, target now 50" in lines[2]
    assert lines[-1].startswith("✅")


def test_failed_report():
    r = _report()
    r.finish(FatalTableError("client_info", "boom"))
    assert not r.ok
    assert r.needs_attention()
    assert "FAILED" in r.summary_lines()[-1]
    assert "client_info" in r.error


def test_needs_attention_only_for_healing_or_errors():
    clean = _report()
    clean.finish()
    assert not clean.needs_attention()
    healed = _report(fk_nullified_count=1)
    healed.finish()
    assert healed.needs_attention()


def test_log_summary(caplog):
    r = _report()
    r.finish()
    with caplog.at_level(logging.INFO):
        r.log_summary(logging.getLogger("fk_copy.test"))
    assert "COPY SUMMARY" in caplog.text
    assert "Totals: read=50" in caplog.text


class _Resp:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


def test_send_discord_alert_posts_truncated_payload(monkeypatch):
    sent = {}

    def fake_post(url, json=None, timeout=None):
        sent.update(url=url, json=json, timeout=timeout)
        return _Resp(204)

    monkeypatch.setattr(alerts.requests, "post", fake_post)
    assert send_discord_alert("x" * 5000, webhook_url="https://discord.test/hook") is True
    assert sent["url"] == "https://discord.test/hook"
    assert sent["timeout"] == 10
    assert len(sent["json"]["content"]) <= MAX_MESSAGE_CHARS
    assert sent["json"]["content"].endswith("(truncated)")


def test_send_discord_alert_without_webhook(monkeypatch):
    monkeypatch.delenv("DISCORD_WEBHOOK", raising=False)

    def must_not_post(*a, **k):
        raise AssertionError("posted without a webhook")

    monkeypatch.setattr(alerts.requests, "post", must_not_post)
    assert send_discord_alert("hello") is False


def test_send_discord_alert_swallows_errors(monkeypatch):
    def boom(*a, **k):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(alerts.requests, "post", boom)
    assert send_discord_alert("hello", webhook_url="https://discord.test/hook") is False
    monkeypatch.setattr(alerts.requests, "post", lambda *a, **k: _Resp(500, "oops"))
    assert send_discord_alert("hello", webhook_url="https://discord.test/hook") is False


def test_format_run_alert():
    r = _report(fk_nullified_count=2)
    r.finish()
    msg = format_run_alert(r)
    assert "needs attention" in msg
    assert "exim_invoicing" in msg and "leo_munimji" in msg
    failed = _report()
    failed.finish(RuntimeError("down"))
    assert "failed" in format_run_alert(failed)


def test_long_alert_keeps_totals_and_closing_fence():
    r = CopyReport(source_db="exim_invoicing", target_db="leo_munimji")
    for i in range(200):
        r.add(CopyStats(table=f"ledger_{i:03d}", rows_read=5, rows_inserted=5, rows_in_target_after=5))
    r.finish(FatalTableError("ledger_200", "relation does not exist"))
    msg = format_run_alert(r)
    assert len(msg) <= MAX_MESSAGE_CHARS
    assert msg.endswith("```")
    assert "table line(s) omitted" in msg
    assert "Totals: read=1000" in msg
    assert "ledger_199" in msg
    assert "ledger_000" not in msg
