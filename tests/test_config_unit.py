import pytest

from image_transformer.config import (
    DEFAULT_IMAGE_SLOT,
    DEFAULT_PROMPT_SLOT,
    FlowscaleSettings,
)
from image_transformer.exceptions import ConfigurationError

FULL_ENV = {
    "FLOWSCALE_API_KEY": "key-1",
    "FLOWSCALE_API_URL": "https://api.flowscale.test/",
    "FLOWSCALE_WORKFLOW_ID": "wf-1",
}


class TestFlowscaleSettings:
    def test_from_env_complete(self):
        settings = FlowscaleSettings.from_env(FULL_ENV)
        assert settings.api_key == "key-1"
        assert settings.api_url == "https://api.flowscale.test"
        assert settings.workflow_id == "wf-1"
        assert settings.image_slot == DEFAULT_IMAGE_SLOT
        assert settings.prompt_slot == DEFAULT_PROMPT_SLOT
        assert settings.group_id is None

    def test_from_env_optional_overrides(self):
        env = dict(FULL_ENV, FLOWSCALE_IMAGE_SLOT="img", FLOWSCALE_PROMPT_SLOT="txt", FLOWSCALE_GROUP_ID="g-1")
        settings = FlowscaleSettings.from_env(env)
        assert (settings.image_slot, settings.prompt_slot, settings.group_id) == ("img", "txt", "g-1")

    def test_from_env_missing_everything(self):
        with pytest.raises(ConfigurationError) as exc_info:
            FlowscaleSettings.from_env({})
        message = str(exc_info.value)
        for name in FULL_ENV:
            assert name in message

    @pytest.mark.parametrize("missing", sorted(FULL_ENV))
    def test_from_env_each_variable_required(self, missing):
        env = dict(FULL_ENV)
        env[missing] = "   "
        with pytest.raises(ConfigurationError, match=missing):
            FlowscaleSettings.from_env(env)

    def test_from_env_reads_os_environ(self, monkeypatch):
        for name, value in FULL_ENV.items():
            monkeypatch.setenv(name, value)
        assert FlowscaleSettings.from_env().workflow_id == "wf-1"


    def test_server_defaults(self):
        settings = FlowscaleSettings.from_env(FULL_ENV)
        assert settings.server_host == "127.0.0.1"
        assert settings.server_port is None

    def test_server_host_and_port(self):
        env = dict(FULL_ENV, IMAGE_TRANSFORMER_HOST="0.0.0.0", IMAGE_TRANSFORMER_PORT="9000")
        settings = FlowscaleSettings.from_env(env)
        assert (settings.server_host, settings.server_port) == ("0.0.0.0", 9000)

    @pytest.mark.parametrize("port", ["http", "0", "70000"])
    def test_invalid_port(self, port):
        with pytest.raises(ConfigurationError, match="IMAGE_TRANSFORMER_PORT"):
            FlowscaleSettings.from_env(dict(FULL_ENV, IMAGE_TRANSFORMER_PORT=port))
