"""Test configuration and fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from matrix_automation.engine.bots.registry import Bot, BotRegistry
from matrix_automation.engine.config import EngineSettings
from matrix_automation.engine.matrix.client import ChatClientError
from matrix_automation.engine.storage.database import Storage

HOMESERVER_DOMAIN = "example.org"

SETTINGS_ENV_VARS = (
    "DEBUG",
    "LOG_LEVEL",
    "DB_FILE",
    "WEBHOOK_LISTENER_HOST",
    "WEBHOOK_LISTENER_PORT",
    "WORKFLOWS_DEF_TOML_FILE",
    "MATRIX_ENABLED",
    "MATRIX_HOMESERVER_URL",
    "MATRIX_SERVER_NAME",
    "MATRIX_USERNAME",
    "MATRIX_PASSWORD",
    "MATRIX_REQUEST_TIMEOUT_SECONDS",
    "POLL_REQUEST_TIMEOUT_SECONDS",
    "STEP_ERROR_POLICY",
    "WAKE_UP_TIMEOUT_SECONDS",
    "ALLOW_PARTIAL_WAKE_UP",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "SMTP_FROM",
    "SMTP_STARTTLS",
)


class FakeChatClient:
    """In-memory ChatClient that records what the engine asked it to do."""

    def __init__(self, *, fail_login: bool = False, fail_join: bool = False) -> None:
        self.fail_login = fail_login
        self.fail_join = fail_join
        self.logins: list[str] = []
        self.sent: list[tuple[str, str]] = []
        self.joined: list[str] = []
        self.invite_callbacks: list[Callable[[str], None]] = []
        self.synced = threading.Event()
        self.closed = False

    def login(self, username: str, password: str) -> None:
        if self.fail_login:
            raise ChatClientError(f"Invalid password for {username}", errcode="M_FORBIDDEN")
        self.logins.append(username)

    def send_text(self, room_id: str, text: str) -> str:
        self.sent.append((room_id, text))
        return f"$event{len(self.sent)}"

    def join_room(self, room_id: str) -> None:
        if self.fail_join:
            raise ChatClientError(f"Cannot join {room_id}")
        self.joined.append(room_id)

    def on_room_invite(self, callback: Callable[[str], None]) -> None:
        self.invite_callbacks.append(callback)

    def invite(self, room_id: str) -> None:
        for callback in self.invite_callbacks:
            callback(room_id)

    def sync(self) -> None:
        self.synced.set()

    def close(self) -> None:
        self.closed = True


class FakeClientFactory:
    """Hands out one FakeChatClient per bot; usernames in ``failing`` cannot log in."""

    def __init__(self, *, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.clients: dict[str, FakeChatClient] = {}
        self._lock = threading.Lock()

    def __call__(self, bot: Bot) -> FakeChatClient:
        client = FakeChatClient(fail_login=bot.username in self.failing)
        with self._lock:
            self.clients[bot.username] = client
        return client


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[pytest.MonkeyPatch]:
    """Remove every engine setting from the process environment."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield monkeypatch


@pytest.fixture
def write_env(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> Callable[..., Path]:
    """Write a .env file from keyword arguments and return its path."""

    def _write(**values: object) -> Path:
        env_file = tmp_path / ".env"
        lines = [f"{key}={value}" for key, value in values.items()]
        env_file.write_text("\n".join([*lines, ""]), encoding="utf-8")
        return env_file

    return _write


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "automation.db"


@pytest.fixture
def settings(write_env: Callable[..., Path], db_path: Path) -> EngineSettings:
    """Settings with chat integration disabled."""
    env_file = write_env(DB_FILE=db_path, MATRIX_ENABLED="false")
    return EngineSettings(_env_file=env_file)


@pytest.fixture
def matrix_settings(write_env: Callable[..., Path], db_path: Path) -> EngineSettings:
    """Settings with chat integration enabled against a fake homeserver."""
    env_file = write_env(
        DB_FILE=db_path,
        MATRIX_HOMESERVER_URL="https://matrix.example.org",
        MATRIX_SERVER_NAME=HOMESERVER_DOMAIN,
        MATRIX_USERNAME="primary",
        MATRIX_PASSWORD="secret",
    )
    return EngineSettings(_env_file=env_file)


@pytest.fixture
def storage(db_path: Path) -> Iterator[Storage]:
    storage = Storage.connect(db_path)
    yield storage
    storage.close()


@pytest.fixture
def bots() -> BotRegistry:
    return BotRegistry(HOMESERVER_DOMAIN)


@pytest.fixture
def primary_client(bots: BotRegistry) -> FakeChatClient:
    """A logged-in primary session registered in ``bots``."""
    client = FakeChatClient()
    bots.append(Bot(id=0, username="primary", password="secret", is_primary=True), client)
    return client


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def fake_client() -> FakeChatClient:
    """A fresh, not yet logged-in session."""
    return FakeChatClient()
