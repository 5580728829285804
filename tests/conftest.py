"""Shared test fixtures for DelayedNotifier."""
import pytest
import pytest_asyncio

from cache.memory_cache import InMemoryStatusCache
from channels.console_adapter import ConsoleAdapter
from config.settings import Settings
from core.dispatcher import NotificationDispatcher
from core.scheduler import NotificationScheduler
from core.service import NotificationService
from core.status import StatusRecorder
from job_queue.message_queue import InMemoryDelayQueue
from models.schemas import Notification

from tests.fakes import RecordingStore


@pytest.fixture
def settings() -> Settings:
    s = Settings()
    s.queue.publish_initial_delay = 0
    s.queue.consumer_concurrency = 1
    s.queue.delayed_promote_interval = 0.05
    return s


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def cache() -> InMemoryStatusCache:
    return InMemoryStatusCache()


@pytest_asyncio.fixture
async def queue():
    q = InMemoryDelayQueue(dead_letter_queue="notifications:dlq", max_attempts=3, retry_backoff_base=1)
    await q.connect()
    yield q
    await q.close()


@pytest.fixture
def channel() -> ConsoleAdapter:
    return ConsoleAdapter()


@pytest.fixture
def recorder(store, cache) -> StatusRecorder:
    return StatusRecorder(store, cache)


@pytest.fixture
def scheduler(queue) -> NotificationScheduler:
    return NotificationScheduler(queue, "notifications", publish_initial_delay=0)


@pytest.fixture
def dispatcher(recorder, channel) -> NotificationDispatcher:
    return NotificationDispatcher(recorder, channel)


@pytest.fixture
def service(scheduler, recorder, dispatcher) -> NotificationService:
    return NotificationService(scheduler, recorder, dispatcher)


@pytest.fixture
def sample_notification() -> Notification:
    return Notification(message="hi", time="", chat_id=42)
