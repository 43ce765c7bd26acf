from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

import yaml

from replybot.config import Settings
from replybot.errors import ConfigurationError
from replybot.logging_config import get_logger
from replybot.schemas.agent import ChatRequest, ContextStrategy, PruneOptions, SimpleMessage

logger = get_logger("agent_profile")


@dataclass
class AgentProfile:
    """Everything about an agent request that does not come from the chat."""

    model: str
    system_prompt: Optional[str] = None
    prompt_type: Optional[str] = None
    allowed_tools: list[str] = field(default_factory=list)
    context: Optional[dict[str, Any]] = None
    tool_context: Optional[dict[str, Any]] = None
    context_strategy: Optional[ContextStrategy] = None
    prune: Optional[bool] = None
    prune_options: Optional[PruneOptions] = None

    @classmethod
    def from_dict(cls, data: dict) -> "AgentProfile":
        model = data.get("model")
        if not model:
            raise ConfigurationError(["AGENT_MODEL"])
        strategy = data.get("context_strategy")
        prune_options = data.get("prune_options")
        return cls(
            model=model,
            system_prompt=data.get("system_prompt"),
            prompt_type=data.get("prompt_type"),
            allowed_tools=list(data.get("allowed_tools") or []),
            context=data.get("context"),
            tool_context=data.get("tool_context"),
            context_strategy=ContextStrategy(strategy) if strategy else None,
            prune=data.get("prune"),
            prune_options=PruneOptions.model_validate(prune_options) if prune_options else None,
        )

    def build_request(self, messages: Sequence[SimpleMessage]) -> ChatRequest:
        return ChatRequest(
            model=self.model,
            messages=list(messages),
            systemPrompt=self.system_prompt,
            promptType=self.prompt_type,
            allowedTools=self.allowed_tools or None,
            context=self.context,
            toolContext=self.tool_context,
            contextStrategy=self.context_strategy,
            prune=self.prune,
            pruneOptions=self.prune_options,
        )


def load_profile(settings: Settings) -> AgentProfile:
    """Load the agent profile from YAML, falling back to AGENT_* settings."""
    data: dict = {}
    if settings.agent_profile_path:
        path = Path(settings.agent_profile_path)
        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as exc:
            raise ConfigurationError([f"AGENT_PROFILE_PATH ({exc})"]) from exc
        if not isinstance(data, dict):
            raise ConfigurationError([f"AGENT_PROFILE_PATH ({path} is not a mapping)"])
        logger.info(f"Loaded agent profile from {path}")

    # explicit settings override file values
    overrides = {
        "model": settings.agent_model,
        "system_prompt": settings.agent_system_prompt,
        "prompt_type": settings.agent_prompt_type,
        "allowed_tools": settings.agent_allowed_tools or None,
    }
    data.update({key: value for key, value in overrides.items() if value is not None})
    return AgentProfile.from_dict(data)
