"""Provider-agnostic agent runtime: config resolution, session identity, invocation."""

import logging
import re
import shlex
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..core.constants import (
    DEFAULT_AGENT_TIMEOUT_MINUTES,
    DEFAULT_AGENT_TYPE,
    DEFAULT_PROMPT_ARG,
    DEFAULT_VERSION_ARGS,
    MAX_NORMALIZE_SECONDS,
    SESSION_NAMESPACE,
)
from ..core.process import CommandResult, run_command
from ..exceptions import AgentError, AgentTimeoutError, ConfigError
from ..models.agent import AgentInvocation, AgentInvocationResult, PromptMode
from ..models.config import AgentConfig, ByeByeFlagConfig
from ..models.config import ResumeTemplates as ResumeTemplatesConfig
from .output import parse_with_reformat
from .presets import AgentPreset, ResumeTemplates, SessionIdStrategy, get_agent_preset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedAgentConfig:
    """Preset merged with user config."""
    kind: str
    command: str
    args: List[str]
    prompt_mode: PromptMode
    prompt_arg: str
    timeout: float  # seconds
    version_args: List[str]
    resume: ResumeTemplates
    session_id_regex: Optional[str] = None
    session_id: Optional[SessionIdStrategy] = None


def resolve_agent_config(config: ByeByeFlagConfig) -> ResolvedAgentConfig:
    """Merge the preset for ``agent.type`` with user overrides.

    User values win; user args are appended to preset args. Unknown types get
    a generic configuration whose command defaults to the type name.

    Raises:
        ConfigError: If no resume.withoutSessionId template can be resolved
    """
    user = config.agent or AgentConfig(type=DEFAULT_AGENT_TYPE)
    kind = user.type
    # Generic fallback: the command defaults to the type name
    preset = get_agent_preset(kind) or AgentPreset(command=kind)
    user_resume = user.resume or ResumeTemplatesConfig()

    without_session_id = user_resume.without_session_id or preset.resume.without_session_id
    if not without_session_id:
        raise ConfigError(
            f'Agent "{kind}" is missing resume.withoutSessionId. Set agent.resume.withoutSessionId '
            "in bye-bye-flag-config.json or add it in the preset."
        )

    return ResolvedAgentConfig(
        kind=kind,
        command=(user.command or preset.command).strip(),
        args=list(preset.args) + list(user.args or []),
        prompt_mode=user.prompt_mode or preset.prompt_mode,
        prompt_arg=user.prompt_arg or preset.prompt_arg or DEFAULT_PROMPT_ARG,
        timeout=(user.timeout_minutes or DEFAULT_AGENT_TIMEOUT_MINUTES) * 60.0,
        version_args=list(user.version_args or preset.version_args or DEFAULT_VERSION_ARGS),
        resume=ResumeTemplates(
            without_session_id=without_session_id,
            with_session_id=user_resume.with_session_id or preset.resume.with_session_id,
        ),
        session_id_regex=user.session_id_regex or preset.session_id_regex,
        session_id=preset.session_id,
    )


def generate_session_id(branch_name: str, now_ms: Optional[int] = None) -> str:
    """Deterministic UUIDv5 from the branch name and a millisecond timestamp."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return str(uuid.uuid5(uuid.UUID(SESSION_NAMESPACE), f"{branch_name}-{now_ms}"))


def strip_arg_pair_or_inline(args: List[str], name: str, value: str) -> List[str]:
    """Remove ``name value`` or ``name=value`` from args, matching value exactly.

    A bare ``name`` whose following token is a different value is dropped on
    its own; the other token is kept.
    """
    stripped = []
    index = 0
    while index < len(args):
        current = args[index]
        if current == name:
            if index + 1 < len(args) and args[index + 1] == value:
                index += 1
            index += 1
            continue
        if current.startswith(f"{name}=") and current[len(name) + 1:] == value:
            index += 1
            continue
        stripped.append(current)
        index += 1
    return stripped


def extract_session_id(stdout: str, pattern: Optional[str]) -> Optional[str]:
    """Apply ``sessionIdRegex``; group 1 is used when the regex has one."""
    if not pattern:
        return None
    try:
        match = re.search(pattern, stdout, re.MULTILINE)
    except re.error as e:
        logger.warning(f"Invalid sessionIdRegex {pattern!r}: {e}")
        return None
    if not match:
        return None
    if match.re.groups and match.group(1):
        return match.group(1)
    return match.group(0)


def render_resume_template(template: str, workspace_path: str, command: str, session_id: Optional[str] = None) -> str:
    return (
        template
        .replace("{{workspacePath}}", str(workspace_path))
        .replace("{{sessionId}}", session_id or "")
        .replace("{{command}}", command)
    )


@dataclass
class ExecutionContract:
    """Arguments and session handling for one invocation."""
    resolved: ResolvedAgentConfig
    invocation_args: List[str]
    retry_args: List[str]
    initial_session_id: Optional[str] = None

    @classmethod
    def create(cls, resolved: ResolvedAgentConfig, branch_name: str, now_ms: Optional[int] = None) -> "ExecutionContract":
        invocation_args = list(resolved.args)
        initial_session_id = None
        if resolved.session_id is not None:
            initial_session_id = generate_session_id(branch_name, now_ms)
            invocation_args.extend([resolved.session_id.arg, initial_session_id])
            # The reformat call must not reuse the task's session
            retry_args = strip_arg_pair_or_inline(invocation_args, resolved.session_id.arg, initial_session_id)
        else:
            retry_args = list(invocation_args)
        return cls(resolved, invocation_args, retry_args, initial_session_id)

    def extract_session_id(self, stdout: str) -> Optional[str]:
        return extract_session_id(stdout, self.resolved.session_id_regex) or self.initial_session_id

    def build_resume_command(self, workspace_path: str, session_id: Optional[str]) -> str:
        templates = self.resolved.resume
        if session_id and templates.with_session_id:
            return render_resume_template(templates.with_session_id, workspace_path, self.resolved.command, session_id)
        return render_resume_template(templates.without_session_id, workspace_path, self.resolved.command)


def build_shell_command(invocation: AgentInvocation, prompt: str, shell_init: Optional[str] = None) -> str:
    """Shell line run under ``bash -c``; every argument is quoted."""
    args = list(invocation.args)
    if invocation.prompt_mode == "arg":
        args.extend([invocation.prompt_arg, prompt])
    line = invocation.command
    if args:
        line = f"{line} {' '.join(shlex.quote(arg) for arg in args)}"
    return f"{shell_init} && {line}" if shell_init else line


class AgentRuntime:
    """Runs the configured agent in a workspace and returns its parsed verdict."""

    def __init__(self, resolved: ResolvedAgentConfig, shell_init: Optional[str] = None, runner=run_command):
        self.resolved = resolved
        self.shell_init = shell_init
        self._runner = runner

    @property
    def kind(self) -> str:
        return self.resolved.kind

    @property
    def prerequisite_command(self) -> str:
        return self.resolved.command

    @property
    def prerequisite_args(self) -> List[str]:
        return list(self.resolved.version_args)

    def _invocation(self, args: List[str], timeout: float) -> AgentInvocation:
        return AgentInvocation(
            command=self.resolved.command,
            args=args,
            prompt_mode=self.resolved.prompt_mode,
            prompt_arg=self.resolved.prompt_arg,
            timeout=timeout,
        )

    async def _run(self, invocation: AgentInvocation, prompt: str, cwd: Path, prefix: str, log: logging.Logger) -> CommandResult:
        return await self._runner(
            ["bash", "-c", build_shell_command(invocation, prompt, self.shell_init)],
            cwd,
            input_text=prompt if invocation.prompt_mode == "stdin" else None,
            timeout=invocation.timeout,
            on_stdout_line=lambda line: log.info(f"[{prefix}] {line}"),
            on_stderr_line=lambda line: log.error(line),
        )

    async def invoke(
        self,
        workspace_path: Path,
        branch_name: str,
        prompt: str,
        log: logging.Logger = logger,
        now_ms: Optional[int] = None,
    ) -> AgentInvocationResult:
        """Run the agent once, then parse (and if needed reformat) its output.

        Raises:
            AgentTimeoutError: If the agent exceeds its timeout
            AgentError: If the agent cannot start or produces no output
            AgentParseError: If no parse stage yields a valid result
        """
        kind = self.kind
        contract = ExecutionContract.create(self.resolved, branch_name, now_ms)

        log.info(f"--- {kind} Output ---")
        try:
            result = await self._run(
                self._invocation(contract.invocation_args, self.resolved.timeout),
                prompt, workspace_path, kind, log,
            )
        except OSError as e:
            raise AgentError(f"Could not start {kind}: {e}") from e
        log.info(f"--- End {kind} Output ---")
        log.info(f"{kind} exit code: {result.returncode}")

        if result.timed_out:
            raise AgentTimeoutError(f"{kind} session timed out after {self.resolved.timeout / 60:g} minutes")
        if not result.stdout:
            raise AgentError(f"{kind} produced no output")

        async def reformat(normalize_prompt: str) -> Optional[str]:
            timeout = min(self.resolved.timeout, MAX_NORMALIZE_SECONDS)
            try:
                retry = await self._run(
                    self._invocation(contract.retry_args, timeout),
                    normalize_prompt, workspace_path, f"{kind}:normalize", log,
                )
            except OSError as e:
                log.error(f"[{kind}] Normalization retry could not start: {e}")
                return None
            if retry.timed_out:
                log.error(f"[{kind}] Normalization retry timed out.")
                return None
            if not retry.stdout:
                log.error(f"[{kind}] Normalization retry produced no output.")
                return None
            return retry.stdout

        output = await parse_with_reformat(result.stdout, reformat, kind=kind)
        session_id = contract.extract_session_id(result.stdout)
        return AgentInvocationResult(
            kind=kind,
            output=output,
            session_id=session_id,
            resume_command=contract.build_resume_command(str(workspace_path), session_id),
        )


def resolve_agent_runtime(config: ByeByeFlagConfig, runner=run_command) -> AgentRuntime:
    """Build the runtime for the configured agent; shellInit comes from repoDefaults."""
    return AgentRuntime(resolve_agent_config(config), shell_init=config.shell_init_for(), runner=runner)
