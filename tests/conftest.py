import io

import pytest

from polyci.config import PipelineConfig
from polyci.notify import NotificationError, Notifier
from polyci.ui.console import Console, set_console


class RecordingNotifier(Notifier):
    """Keeps every delivered message in memory; optionally fails delivery."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.sent = []

    def _deliver(self, channel, message):
        if self.fail:
            raise NotificationError("channel unreachable")
        self.sent.append((channel, message))


@pytest.fixture
def console():
    c = Console(stream=io.StringIO(), err_stream=io.StringIO())
    set_console(c)
    yield c
    set_console(Console())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config(tmp_path):
    return PipelineConfig.from_env(
        {},
        state_dir=tmp_path / ".polyci",
        repository="acme/monorepo",
        branch="main",
        server_url="https://ci.example.com",
    )
