import pytest

from chatsync.core.config import DEFAULT_API_URL, PresencePolicy, Settings


ENV_NAMES = [
    "CHATSYNC_API_URL",
    "CHATSYNC_API_TOKEN",
    "CHATSYNC_THREAD_POLL_SECONDS",
    "CHATSYNC_CONVERSATION_POLL_SECONDS",
    "CHATSYNC_HEARTBEAT_SECONDS",
    "CHATSYNC_REQUEST_TIMEOUT_SECONDS",
    "CHATSYNC_THREAD_PAGE_SIZE",
    "CHATSYNC_LOG_LEVEL",
    "CHATSYNC_ONLINE_SECONDS",
    "CHATSYNC_AWAY_SECONDS",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_from_empty_environment(clean_env):
    settings = Settings.from_env()
    assert settings.api_url == DEFAULT_API_URL
    assert settings.api_token is None
    assert settings.thread_poll_seconds == 3
    assert settings.conversation_poll_seconds == 6
    assert settings.heartbeat_seconds == 30
    assert settings.presence == PresencePolicy()


def test_environment_overrides(clean_env):
    clean_env.setenv("CHATSYNC_API_URL", "https://chat.example.org/api")
    clean_env.setenv("CHATSYNC_API_TOKEN", "abc")
    clean_env.setenv("CHATSYNC_THREAD_POLL_SECONDS", "5")
    clean_env.setenv("CHATSYNC_LOG_LEVEL", "debug")
    clean_env.setenv("CHATSYNC_ONLINE_SECONDS", "60")
    clean_env.setenv("CHATSYNC_AWAY_SECONDS", "300")
    settings = Settings.from_env()
    assert settings.api_url == "https://chat.example.org/api"
    assert settings.api_token == "abc"
    assert settings.conversation_poll_seconds == 10
    assert settings.log_level == "DEBUG"
    assert settings.presence.online_seconds == 60
    assert settings.presence.away_seconds == 300


def test_invalid_values_are_rejected():
    with pytest.raises(ValueError):
        Settings(thread_poll_seconds=0)
    with pytest.raises(ValueError):
        Settings(thread_page_size=0)
    with pytest.raises(ValueError):
        PresencePolicy(online_seconds=600, away_seconds=600)
