from datetime import date

import pytest

from fakes import FakeGitHub, FakeSlack, make_http_client
from services.flow_controller import FlowController
from services.github.commit_engine import AtomicCommitEngine
from services.github.content_client import ContentRepositoryClient
from services.image_optimizer import ImageOptimizer
from services.session_store import SessionStore
from services.slack.notifier import Notifier
from services.slack.slack_client import SlackClient
from utils.database_init import AsyncDatabaseInitializer
from utils.settings import Settings

TODAY = date(2024, 12, 25)
NOW_MS = 1_735_100_000_000


@pytest.fixture
def settings(tmp_path):
    return Settings(
        slack_bot_token="xoxb-test",
        github_token="ghp-test",
        github_owner="acme",
        github_repo="site",
        site_base_url="https://example.com",
        database_dir=str(tmp_path / "db"),
    )


@pytest.fixture
def github():
    return FakeGitHub(files={"README.md": b"# site\n"})


@pytest.fixture
def slack():
    return FakeSlack()


@pytest.fixture
def http_client(github, slack):
    return make_http_client(github, slack)


@pytest.fixture
def content_client(http_client):
    return ContentRepositoryClient(http_client, "ghp-test", "acme", "site")


@pytest.fixture
def engine(content_client, settings):
    return AtomicCommitEngine(content_client, settings.github_branch, settings.json_path)


@pytest.fixture
def store(settings):
    return SessionStore(AsyncDatabaseInitializer(settings.database_dir))


@pytest.fixture
def flow(store, engine, http_client, settings):
    slack_client = SlackClient(http_client, settings.slack_bot_token)
    return FlowController(
        store,
        engine,
        Notifier(slack_client),
        slack_client,
        ImageOptimizer(max_size=(settings.image_max_size, settings.image_max_size)),
        settings,
        today=lambda: TODAY,
        clock_ms=lambda: NOW_MS,
    )
