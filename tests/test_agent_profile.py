import pytest
from conftest import make_settings

from replybot.errors import ConfigurationError
from replybot.schemas.agent import ContextStrategy, SimpleMessage
from replybot.services.agent_profile import AgentProfile, load_profile

PROFILE_YAML = """
model: file-model
system_prompt: You are a friendly recruiter.
prompt_type: consultation
allowed_tools:
  - job_search
context_strategy: skip
prune: true
prune_options:
  targetTokens: 4000
"""


class TestLoadProfile:
    def test_loads_yaml_file(self, tmp_path):
        path = tmp_path / "profile.yaml"
        path.write_text(PROFILE_YAML, encoding="utf-8")

        profile = load_profile(make_settings(agent_model=None, agent_profile_path=str(path)))

        assert profile.model == "file-model"
        assert profile.allowed_tools == ["job_search"]
        assert profile.context_strategy == ContextStrategy.SKIP
        assert profile.prune_options.targetTokens == 4000

    def test_settings_override_file(self, tmp_path):
        path = tmp_path / "profile.yaml"
        path.write_text(PROFILE_YAML, encoding="utf-8")

        profile = load_profile(make_settings(agent_model="env-model", agent_profile_path=str(path)))

        assert profile.model == "env-model"
        assert profile.system_prompt == "You are a friendly recruiter."

    def test_missing_model_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            load_profile(make_settings(agent_model=None))

    def test_missing_file_is_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_profile(make_settings(agent_profile_path=str(tmp_path / "absent.yaml")))


class TestBuildRequest:
    def test_request_carries_profile_fields(self):
        profile = AgentProfile(model="m", system_prompt="sp", allowed_tools=["a"])

        request = profile.build_request([SimpleMessage(role="user", content="hi")])

        assert request.to_payload() == {
            "model": "m",
            "messages": [{"role": "user", "content": "hi"}],
            "systemPrompt": "sp",
            "allowedTools": ["a"],
        }
