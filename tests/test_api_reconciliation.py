from datetime import date, datetime, timedelta, timezone

import pytest

from invoice_recon import config
from invoice_recon.exceptions import SourceError
from invoice_recon.models.db.enums import ReportStatus
from invoice_recon.models.records import Report, Summary
from conftest import FakeSource, make_invoice, make_order

API = "/api/v1/reconciliation"
BASE = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _seed(report_repo, count):
    return [
        report_repo.save(Report(
            period_start=date(2024, 1, 1),
            period_end=date(2024, 1, 31),
            status=ReportStatus.COMPLETED,
            generated_at=BASE + timedelta(minutes=i),
            summary=Summary(),
        ))
        for i in range(count)
    ]


def test_manual_run_returns_completed_report(client, use_engine):
    use_engine([make_order("1001", "50.00")], [make_invoice("2000", "75.00")])
    r = client.post(f"{API}/run", json={"start_date": "2024-01-01", "end_date": "2024-01-31"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "completed"
    assert body["trigger"] == "manual"
    assert body["discrepancy_count"] == 2
    assert [d["type"] for d in body["discrepancies"]] == ["missing_in_zoho", "missing_in_wc"]
    assert body["summary"]["missing_in_zoho"] == 1
    assert body["summary"]["missing_in_wc"] == 1


def test_run_with_start_after_end_is_422(client, use_engine, report_repo):
    use_engine()
    r = client.post(f"{API}/run", json={"start_date": "2024-02-01", "end_date": "2024-01-01"})
    assert r.status_code == 422
    assert r.json()["success"] is False
    assert report_repo.get_latest() is None


def test_run_with_missing_dates_is_422(client, use_engine):
    use_engine()
    assert client.post(f"{API}/run", json={"start_date": "2024-02-01"}).status_code == 422


def test_run_conflict_is_409(client, use_engine, report_repo):
    use_engine()
    report_repo.save(Report(period_start=date(2024, 1, 1), period_end=date(2024, 1, 31), status=ReportStatus.RUNNING, generated_at=datetime.now(timezone.utc)))
    r = client.post(f"{API}/run", json={"start_date": "2024-01-01", "end_date": "2024-01-31"})
    assert r.status_code == 409
    assert "already in progress" in r.json()["message"]


def test_source_failure_returns_failed_report(client, use_engine):
    broken = FakeSource("woocommerce", errors=[SourceError("woocommerce", "woocommerce API returned status 401: bad key", error_code="HTTP_401")])
    use_engine(order_source=broken)
    r = client.post(f"{API}/run", json={"start_date": "2024-01-01", "end_date": "2024-01-31"})
    assert r.status_code == 200
    assert r.json()["status"] == "failed"
    assert "401" in r.json()["error"]
    assert r.json()["summary"] is None


def test_queue_accepts_and_deduplicates(client, reconciliation_queue):
    payload = {"start_date": "2024-01-01", "end_date": "2024-01-31"}
    first = client.post(f"{API}/queue", json=payload)
    assert first.status_code == 202
    assert first.json()["data"]["job_key"] == "rec:manual:2024-01-01:2024-01-31"
    client.post(f"{API}/queue", json=payload)
    assert reconciliation_queue.depth() == 1


def test_queue_rejects_inverted_period(client, reconciliation_queue):
    r = client.post(f"{API}/queue", json={"start_date": "2024-02-01", "end_date": "2024-01-01"})
    assert r.status_code == 422
    assert reconciliation_queue.depth() == 0


def test_list_reports_paginates_newest_first(client, report_repo):
    _seed(report_repo, 25)
    r = client.get(f"{API}/reports", params={"page": 2, "per_page": 10})
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 25 and body["pages"] == 3 and body["page"] == 2
    assert len(body["reports"]) == 10
    stamps = [item["generated_at"] for item in body["reports"]]
    assert stamps == sorted(stamps, reverse=True)
    assert "discrepancies" not in body["reports"][0] or body["reports"][0]["discrepancies"] == []


def test_list_reports_clamps_page(client, report_repo):
    _seed(report_repo, 3)
    body = client.get(f"{API}/reports", params={"page": 99, "per_page": 2}).json()
    assert body["page"] == 2
    assert len(body["reports"]) == 1
    empty_page = client.get(f"{API}/reports", params={"page": 0}).json()
    assert empty_page["page"] == 1


def test_list_reports_sweeps_stale_runs(client, report_repo):
    stale = report_repo.save(Report(period_start=date(2024, 1, 1), period_end=date(2024, 1, 2), status=ReportStatus.RUNNING, generated_at=datetime.now(timezone.utc) - timedelta(hours=2)))
    body = client.get(f"{API}/reports").json()
    assert body["reports"][0]["id"] == stale.id
    assert body["reports"][0]["status"] == "failed"


def test_latest_and_single_report(client, report_repo):
    assert client.get(f"{API}/reports/latest").status_code == 404
    reports = _seed(report_repo, 2)
    assert client.get(f"{API}/reports/latest").json()["id"] == reports[-1].id
    assert client.get(f"{API}/reports/{reports[0].id}").json()["id"] == reports[0].id
    assert client.get(f"{API}/reports/424242").status_code == 404


def test_export_csv(client, use_engine):
    use_engine([make_order("1001", "50.00")], [])
    report_id = client.post(f"{API}/run", json={"start_date": "2024-01-01", "end_date": "2024-01-31"}).json()["id"]
    r = client.get(f"{API}/reports/{report_id}/export")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert 'filename="reconciliation-report-2024-01-01-to-2024-01-31.csv"' in r.headers["content-disposition"]
    text = r.content.decode("utf-8")
    assert text.startswith("\ufeff")
    assert "Missing In Zoho,1001,2024-01-10,50.00" in text
    assert client.get(f"{API}/reports/9999/export").status_code == 404


def test_delete_report_and_delete_all(client, report_repo):
    reports = _seed(report_repo, 3)
    assert client.delete(f"{API}/reports/{reports[0].id}").json()["success"] is True
    assert client.delete(f"{API}/reports/{reports[0].id}").status_code == 404
    assert client.delete(f"{API}/reports").json()["success"] is True
    assert client.get(f"{API}/reports").json()["total"] == 0


def test_reconciliation_health(client, use_engine):
    use_engine()
    body = client.get(f"{API}/health").json()
    assert body["success"] is True
    assert body["data"]["run_lock_backend"] == "memory"
    assert body["data"]["latest_report"] is None


def test_root_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["queue"]["shutdown"] is False


# ---------- auth ----------

@pytest.fixture()
def admin_token(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_TOKEN", "s3cret")
    return "s3cret"


def test_token_required_when_configured(client, admin_token):
    r = client.get(f"{API}/reports")
    assert r.status_code == 401
    assert r.headers["www-authenticate"] == "Bearer"
    assert client.get(f"{API}/reports", headers={"Authorization": "Bearer wrong"}).status_code == 401
    ok = client.get(f"{API}/reports", headers={"Authorization": f"Bearer {admin_token}"})
    assert ok.status_code == 200
