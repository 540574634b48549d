import os
import threading
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient


class FakeClock:
    """Injectable clock; tests move time explicitly."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


class RecordingDispatcher:
    """
    Test dispatcher: records calls and returns `result`.

    With `gate` set, `execute` blocks until the gate opens so tests can act while
    a dispatch is in flight.
    """

    def __init__(self):
        from container_scheduler.scheduler.dispatcher import ActionResult

        self.calls = []
        self.result = ActionResult(success=True, output="ok")
        self.error = None
        self.gate = None
        self.started = threading.Event()

    def execute(self, container_name, action, action_params):
        self.calls.append((container_name, action, dict(action_params or {})))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(scope="function")
def db_url(tmp_path, monkeypatch):
    db_path = tmp_path / "test.db"
    database_url = f"sqlite:///{db_path}"

    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("TESTING", "true")
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.delenv("CONTAINER_API_URL", raising=False)

    # Clear cached settings/engines/session factories so each test uses its own temp DB.
    from container_scheduler.app import scheduler_runtime
    from container_scheduler.config import get_settings
    from container_scheduler.database import engine as db_engine
    from container_scheduler.database import session as db_session

    get_settings.cache_clear()
    db_engine.get_engine.cache_clear()
    db_session.reset_session_factory()
    scheduler_runtime._reset_for_tests()

    yield database_url

    scheduler_runtime._reset_for_tests()
    db_engine.get_engine().dispose()
    db_engine.get_engine.cache_clear()
    db_session.reset_session_factory()
    get_settings.cache_clear()


@pytest.fixture(scope="function")
def setup_db(db_url):
    assert os.environ.get("DATABASE_URL") == db_url
    from container_scheduler.database.bootstrap import init_db

    init_db()
    yield


@pytest.fixture(scope="function")
def db_session(setup_db):
    from container_scheduler.database.session import get_db_session

    with get_db_session() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def dispatcher():
    d = RecordingDispatcher()
    yield d
    # never leave a dispatch thread parked on the gate
    if d.gate is not None:
        d.gate.set()


@pytest.fixture
def store(setup_db, clock):
    from container_scheduler.scheduler.store import ScheduleStore

    return ScheduleStore(clock=clock)


@pytest.fixture
def execution_log(setup_db, clock):
    from container_scheduler.scheduler.execution_log import ExecutionLog

    return ExecutionLog(clock=clock)


@pytest.fixture
def loop(store, execution_log, dispatcher, clock):
    from container_scheduler.scheduler.loop import SchedulerLoop

    scheduler_loop = SchedulerLoop(
        store,
        execution_log,
        dispatcher,
        max_workers=4,
        dispatch_timeout=5,
        clock=clock,
    )
    yield scheduler_loop
    scheduler_loop.stop()


@pytest.fixture
def service(loop):
    from container_scheduler.scheduler.service import ScheduleService

    return ScheduleService(loop)


@pytest.fixture
def new_schedule():
    from container_scheduler.scheduler.store import NewSchedule

    def _make(**overrides):
        values = {
            "container_name": "web-api",
            "name": "Nightly restart",
            "action": "restart",
            "cron_expression": "* * * * *",
            "timezone": "UTC",
        }
        values.update(overrides)
        return NewSchedule(**values)

    return _make


@pytest.fixture(scope="function")
def fastapi_app(setup_db, loop):
    from container_scheduler.app import scheduler_runtime
    from container_scheduler.app.main import create_app

    scheduler_runtime.set_loop(loop)
    return create_app()


@pytest.fixture(scope="function")
async def async_client(fastapi_app):
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
