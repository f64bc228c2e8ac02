"""Built-in agent presets. Any other agent type uses the generic fallback."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models.agent import PromptMode


@dataclass(frozen=True)
class SessionIdStrategy:
    """Generate a session id up front and pass it as ``<arg> <id>``."""
    arg: str


@dataclass(frozen=True)
class ResumeTemplates:
    without_session_id: Optional[str] = None
    with_session_id: Optional[str] = None


@dataclass(frozen=True)
class AgentPreset:
    command: str
    args: List[str] = field(default_factory=list)
    prompt_mode: PromptMode = "stdin"
    prompt_arg: Optional[str] = None
    version_args: List[str] = field(default_factory=lambda: ["--version"])
    session_id_regex: Optional[str] = None
    session_id: Optional[SessionIdStrategy] = None
    resume: ResumeTemplates = field(default_factory=ResumeTemplates)


CLAUDE_PRESET = AgentPreset(
    command="claude",
    args=["--dangerously-skip-permissions"],
    prompt_mode="arg",
    prompt_arg="-p",
    session_id=SessionIdStrategy(arg="--session-id"),
    resume=ResumeTemplates(
        with_session_id="cd {{workspacePath}} && {{command}} --resume {{sessionId}}",
        without_session_id="cd {{workspacePath}} && {{command}} --resume",
    ),
)

CODEX_PRESET = AgentPreset(
    command="codex",
    args=["exec", "--skip-git-repo-check", "--full-auto", "-"],
    prompt_mode="stdin",
    resume=ResumeTemplates(
        without_session_id="cd {{workspacePath}} && {{command}} resume --all",
    ),
)

PRESETS: Dict[str, AgentPreset] = {
    "claude": CLAUDE_PRESET,
    "codex": CODEX_PRESET,
}


def get_agent_preset(agent_type: str) -> Optional[AgentPreset]:
    return PRESETS.get(agent_type)
