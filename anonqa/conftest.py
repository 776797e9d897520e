# anonqa/conftest.py
import pytest

from anonqa.core.metrics import METRICS
from anonqa.features.ai.client import CompletionClient
from anonqa.features.content.store import InMemoryContentStore
from anonqa.features.usage.service import InMemoryUsageStore, UsageLedger
from anonqa.tests.mocks import FakeAsyncGroq


@pytest.fixture
def fake_groq():
    return FakeAsyncGroq()


@pytest.fixture
def content_store():
    # Low bcrypt cost keeps tests fast
    return InMemoryContentStore(bcrypt_rounds=4)


@pytest.fixture
def usage_store():
    return InMemoryUsageStore()


@pytest.fixture
def usage_ledger(usage_store):
    return UsageLedger(usage_store)


@pytest.fixture
def app(content_store, usage_ledger, fake_groq):
    """The ASGI app with fresh per-test state and a fake upstream client."""
    from anonqa.main import app as asgi_app, init_state

    METRICS.reset()
    init_state(
        asgi_app,
        content_store=content_store,
        usage_ledger=usage_ledger,
        completion_client=CompletionClient(api_key="test-key", client=fake_groq),
    )
    yield asgi_app
    asgi_app.state.rooms.clear()
