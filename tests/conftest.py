import datetime as dt
import pathlib
import sys
from dataclasses import dataclass

import pytest
from fastapi import FastAPI, Request
from sqlalchemy.orm import Session, sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from quoteflow.app_logging import init_logging
from quoteflow.conversations.repository import InMemoryConversationRepository
from quoteflow.conversations.service import ConversationService
from quoteflow.core.rate_limit import limiter
from quoteflow.core.sequence import SequenceGenerator
from quoteflow.core.settings import reset_settings_cache
from quoteflow.customers import CustomerService, InMemoryCustomerRepository
from quoteflow.extraction import LineItemDraft
from quoteflow.models.session import get_sessionmaker, init_db


class FakeClock:
    """Manually advanced clock for deterministic identifiers."""

    def __init__(self, start: dt.datetime | None = None) -> None:
        self.current = start or dt.datetime(2025, 3, 14, 9, 30, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += dt.timedelta(**kwargs)


class StubExtractor:
    """Returns one salmon item for any text that mentions kilograms."""

    def __init__(self, items: list[LineItemDraft] | None = None) -> None:
        self.items = items
        self.calls: list[str] = []

    def extract(self, text: str) -> list[LineItemDraft]:
        self.calls.append(text)
        if self.items is not None:
            return list(self.items)
        if "kg" not in text.lower():
            return []
        return [
            LineItemDraft(
                product="Salmon",
                requested_quantity=5000,
                trim_type="Fillet",
                production_type="Fresh",
                mapping_confidence="HIGH",
            )
        ]


@dataclass
class ServiceBundle:
    service: ConversationService
    repository: InMemoryConversationRepository
    customers: InMemoryCustomerRepository
    extractor: StubExtractor
    clock: FakeClock
    sequence: SequenceGenerator


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    reset_settings_cache()
    previous = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = previous
    reset_settings_cache()


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bundle(clock) -> ServiceBundle:
    repository = InMemoryConversationRepository()
    customers = InMemoryCustomerRepository()
    extractor = StubExtractor()
    sequence = SequenceGenerator(clock=clock)
    service = ConversationService(
        repository,
        CustomerService(customers),
        extractor,
        sequence=sequence,
        max_retries=3,
        extraction_timeout=0,
    )
    return ServiceBundle(service, repository, customers, extractor, clock, sequence)


@pytest.fixture
def session_factory(tmp_path) -> sessionmaker[Session]:
    factory = get_sessionmaker(f"sqlite+pysqlite:///{tmp_path / 'quoteflow.db'}")
    engine = factory.kw["bind"]
    init_db(engine)
    yield factory
    engine.dispose()
