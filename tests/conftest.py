"""Pytest fixtures and factories.

All model modules must be imported before Base.metadata.create_all() so both
tables exist in the throwaway database.
"""
import os
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'invoice_recon' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Keep test runs from writing the rotating log file
os.environ.setdefault("LOG_FILE", "")

from invoice_recon.main import app  # type: ignore  # noqa: E402
from invoice_recon.database import Base  # type: ignore  # noqa: E402
from invoice_recon.api import deps  # type: ignore  # noqa: E402
from invoice_recon.models.db import ReconciliationReportRecord, ReconciliationSettingsRecord  # noqa: E402
from invoice_recon.integrations.base import SourcePage  # noqa: E402
from invoice_recon.jobs.queue import RunQueue  # noqa: E402
from invoice_recon.jobs.run_lock import RunLock  # noqa: E402
from invoice_recon.models.records import Invoice, Order  # noqa: E402
from invoice_recon.models.schemas.settings import ReconciliationSettings  # noqa: E402
from invoice_recon.repositories.report_repository import ReportRepository  # noqa: E402
from invoice_recon.repositories.settings_repository import SettingsRepository  # noqa: E402
from invoice_recon.services.reconciliation_engine import ReconciliationEngine  # noqa: E402
from invoice_recon.services.source_fetcher import SourceFetcher  # noqa: E402
from invoice_recon.utils.circuit_breaker import CircuitBreaker, SOURCE_CIRCUIT_BREAKER  # noqa: E402

# File-based SQLite so the API threadpool and the test thread see the same data.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_reconciliation.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_reconciliation.db")
    except OSError:
        pass


@pytest.fixture(scope="session", autouse=True)
def reconciliation_queue(create_test_db):
    """Queue on app.state for the endpoints; the production lifespan is bypassed in tests."""
    queue = RunQueue()
    app.state.reconciliation_queue = queue  # type: ignore[attr-defined]
    app.state.run_lock = RunLock(use_redis=False)  # type: ignore[attr-defined]
    yield queue
    queue.shutdown()


@pytest.fixture(autouse=True)
def _isolate_test_state(reconciliation_queue):
    """Per-test isolation: empty tables, empty queue, fresh circuit breaker state."""
    with TestingSessionLocal() as session, session.begin():
        session.execute(delete(ReconciliationReportRecord))
        session.execute(delete(ReconciliationSettingsRecord))
    reconciliation_queue.purge()
    SOURCE_CIRCUIT_BREAKER.reset()
    yield
    reconciliation_queue.purge()
    SOURCE_CIRCUIT_BREAKER.reset()
    app.dependency_overrides.pop(deps.get_engine, None)


app.dependency_overrides[deps.get_session_factory] = lambda: TestingSessionLocal


# ---------- Fake sources ----------

class FakeSource:
    """In-memory paginated source; ``errors`` are raised on successive calls (None = succeed)."""

    def __init__(self, name: str, items=(), *, per_page: int = 100, errors=None):
        self.name = name
        self.items = list(items)
        self.per_page = per_page
        self.errors = list(errors or [])
        self.calls: list[int] = []

    async def fetch_page(self, start, end, page):
        self.calls.append(page)
        if self.errors:
            err = self.errors.pop(0)
            if err is not None:
                raise err
        chunk = self.items[(page - 1) * self.per_page: page * self.per_page]
        return SourcePage(items=chunk, page=page, has_more=page * self.per_page < len(self.items))


async def _no_sleep(_seconds):
    return None


# ---------- Data factory helpers ----------

def make_order(number, total="100.00", *, paid=True, refunded="0.00", status="completed", day=date(2024, 1, 10), currency="EUR"):
    total = Decimal(total)
    return Order(
        id=str(number),
        number=str(number),
        date=day,
        status=status,
        total=total,
        amount_paid=total if paid else Decimal("0.00"),
        refund_total=Decimal(refunded),
        currency=currency,
    )


def make_invoice(reference, total="100.00", *, paid=None, credits="0.00", status="paid", number=None, invoice_id=None, day=date(2024, 1, 10), currency="EUR"):
    total = Decimal(total)
    ref = str(reference) if reference is not None else None
    return Invoice(
        id=invoice_id or f"inv-{ref or 'none'}",
        number=number or f"INV-{ref or '0'}",
        reference=ref,
        date=day,
        status=status,
        total=total,
        amount_paid=total if paid is None else Decimal(paid),
        credit_total=Decimal(credits),
        currency=currency,
    )


@pytest.fixture()
def order_factory():
    return make_order


@pytest.fixture()
def invoice_factory():
    return make_invoice


@pytest.fixture()
def fake_source():
    return FakeSource


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


@pytest.fixture()
def report_repo():
    return ReportRepository(TestingSessionLocal)


@pytest.fixture()
def settings_repo():
    return SettingsRepository(TestingSessionLocal)


@pytest.fixture()
def build_engine(report_repo):
    """Engine over fake sources with retries that never sleep and a private circuit breaker."""
    def _build(orders=(), invoices=(), *, settings=None, order_source=None, invoice_source=None, run_lock=None, clock=None):
        kwargs = {}
        if clock is not None:
            kwargs["clock"] = clock
        return ReconciliationEngine(
            report_repo,
            order_source or FakeSource("woocommerce", orders),
            invoice_source or FakeSource("zoho_books", invoices),
            settings_provider=lambda: settings or ReconciliationSettings(),
            run_lock=run_lock or RunLock(use_redis=False),
            fetcher=SourceFetcher(breaker=CircuitBreaker(), sleep=_no_sleep),
            **kwargs,
        )
    return _build


@pytest.fixture()
def use_engine(build_engine):
    """Route the API's engine dependency to a fake-source engine."""
    def _install(orders=(), invoices=(), **kwargs):
        eng = build_engine(orders, invoices, **kwargs)
        app.dependency_overrides[deps.get_engine] = lambda: eng
        return eng
    return _install


@pytest.fixture()
def client():
    return TestClient(app)
