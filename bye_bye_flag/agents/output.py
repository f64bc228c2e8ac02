"""Turn free-form agent text into an ``AgentOutput``.

Parsing runs in stages and stops at the first success:

1. the text after the last ``---RESULT---`` delimiter (optionally fenced)
2. fenced code blocks, most recent first, then a raw JSON object near the end
3. a reformat call to the same agent, whose reply goes through stages 1 and 2
"""

import json
import logging
import re
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from ..core.constants import (
    MAX_NORMALIZE_PROMPT_OUTPUT_LENGTH,
    NORMALIZE_HEAD_CHARS,
    NORMALIZE_TAIL_CHARS,
    OUTPUT_PREVIEW_CHARS,
)
from ..exceptions import AgentParseError
from ..models.agent import AgentOutput

logger = logging.getLogger(__name__)

RESULT_DELIMITER = "---RESULT---"

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_MAX_BRACE_ATTEMPTS = 25

Reformatter = Callable[[str], Awaitable[Optional[str]]]


def _validate(candidate: str) -> AgentOutput:
    return AgentOutput.model_validate(json.loads(candidate))


def parse_delimited_output(text: str) -> AgentOutput:
    """Parse the JSON that follows the last result delimiter.

    Raises:
        ValueError: If there is no delimiter or the JSON is invalid
        ValidationError: If the JSON does not match the result schema
    """
    index = text.rfind(RESULT_DELIMITER)
    if index == -1:
        raise ValueError(f"Could not find {RESULT_DELIMITER} in text.")
    json_part = text[index + len(RESULT_DELIMITER):].strip()
    fenced = _FENCE.search(json_part)
    if fenced:
        json_part = fenced.group(1).strip()
    return _validate(json_part)


def scan_for_output(text: str) -> Optional[AgentOutput]:
    """Heuristic search for a valid result in fenced blocks or trailing JSON."""
    for match in reversed(list(_FENCE.finditer(text))):
        candidate = match.group(1).strip()
        if not candidate:
            continue
        try:
            return _validate(candidate)
        except (ValueError, ValidationError):
            continue

    last_close = text.rfind("}")
    if last_close == -1:
        return None
    start = text.rfind("{", 0, last_close)
    attempts = 0
    while start != -1 and attempts < _MAX_BRACE_ATTEMPTS:
        try:
            return _validate(text[start:last_close + 1].strip())
        except (ValueError, ValidationError):
            pass
        attempts += 1
        start = text.rfind("{", 0, start)
    return None


def parse_agent_output(text: str) -> Optional[AgentOutput]:
    """Stages 1 and 2. Returns None if neither finds a valid result."""
    if RESULT_DELIMITER in text:
        try:
            return parse_delimited_output(text)
        except (ValueError, ValidationError) as e:
            logger.debug(f"Delimited result did not parse, falling back to scan: {e}")
    return scan_for_output(text)


def build_normalization_prompt(raw_output: str) -> str:
    """Prompt asking the agent to restate ``raw_output`` as the result JSON."""
    if len(raw_output) > MAX_NORMALIZE_PROMPT_OUTPUT_LENGTH:
        raw_output = (
            raw_output[:NORMALIZE_HEAD_CHARS]
            + "\n\n[... truncated middle section ...]\n\n"
            + raw_output[-NORMALIZE_TAIL_CHARS:]
        )

    return f"""You are a formatter. Convert the following feature flag removal output to this exact JSON format.
Output ONLY the JSON object, with no markdown and no extra text.

{{
  "status": "success" or "refused",
  "summary": "brief description of what was done",
  "filesChanged": ["array", "of", "file", "paths"],
  "testsPass": true/false,
  "lintPass": true/false,
  "typecheckPass": true/false,
  "verificationDetails": {{
    "tests": "optional brief failure detail (only when testsPass=false)",
    "lint": "optional brief failure detail (only when lintPass=false)",
    "typecheck": "optional brief failure detail (only when typecheckPass=false)"
  }}
}}

Rules:
- If tests/lint/typecheck were skipped or not run, set them to true.
- If the task was refused (e.g. flag not found), set status to "refused".
- Include verificationDetails entries only for checks that failed.
- Do not execute tools, commands, or edits. Only transform text into the JSON object.

Output to convert:

{raw_output}"""


def output_preview(text: str, limit: int = OUTPUT_PREVIEW_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


async def parse_with_reformat(raw_output: str, reformat: Reformatter, kind: str = "agent") -> AgentOutput:
    """Run all three stages.

    Args:
        raw_output: Agent stdout
        reformat: Sends a prompt to the same agent; returns its stdout or None
        kind: Agent name for messages

    Raises:
        AgentParseError: If every stage fails
    """
    output = parse_agent_output(raw_output)
    if output is not None:
        return output

    logger.info(f"[{kind}] Parse failed, attempting normalization retry with the same agent...")
    reformatted = await reformat(build_normalization_prompt(raw_output))
    if reformatted:
        output = parse_agent_output(reformatted)
        if output is not None:
            return output

    preview = output_preview(raw_output)
    raise AgentParseError(
        f"Failed to parse {kind} output as AgentOutput.\n\nOutput preview:\n{preview}",
        preview=preview,
    )
