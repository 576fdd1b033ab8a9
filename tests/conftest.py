import pytest

from buildloop.config import AgentSettings


@pytest.fixture
def settings(tmp_path):
    return AgentSettings(workspace=tmp_path, api_key="test-key").without_pacing()
