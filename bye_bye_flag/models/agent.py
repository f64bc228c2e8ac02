"""Agent invocation and output models."""

from dataclasses import dataclass, field
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


PromptMode = Literal["stdin", "arg"]


class VerificationDetails(BaseModel):
    """Short failure notes for checks that did not pass."""

    tests: Optional[str] = None
    lint: Optional[str] = None
    typecheck: Optional[str] = None


class AgentOutput(BaseModel):
    """Structured verdict reported by the agent."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: Literal["success", "refused"]
    summary: str
    files_changed: List[str]
    tests_pass: bool
    lint_pass: bool
    typecheck_pass: bool
    verification_details: Optional[VerificationDetails] = None


@dataclass
class AgentInvocation:
    """How to spawn one agent process."""
    command: str
    args: List[str] = field(default_factory=list)
    prompt_mode: PromptMode = "stdin"
    prompt_arg: str = "-p"
    timeout: float = 60 * 60  # seconds


@dataclass
class AgentInvocationResult:
    """Parsed agent result plus session identity."""
    kind: str
    output: AgentOutput
    resume_command: str
    session_id: Optional[str] = None
