"""Agent invocation contract."""

from .output import RESULT_DELIMITER, parse_agent_output, parse_with_reformat
from .presets import PRESETS, get_agent_preset
from .runtime import AgentRuntime, resolve_agent_config, resolve_agent_runtime, strip_arg_pair_or_inline

__all__ = [
    'RESULT_DELIMITER',
    'parse_agent_output',
    'parse_with_reformat',
    'PRESETS',
    'get_agent_preset',
    'AgentRuntime',
    'resolve_agent_config',
    'resolve_agent_runtime',
    'strip_arg_pair_or_inline',
]
