"""Models for bye-bye-flag."""

from .agent import AgentInvocation, AgentInvocationResult, AgentOutput, VerificationDetails
from .config import ByeByeFlagConfig, parse_config
from .review import ReviewRecord, ReviewState, ReviewStatus, reduce_review_records
from .summary import FlagResult, FlagStatus, RunSummary
from .task import FlagTask, RemovalRequest, RemovalResult, RemovalStatus, RepoResult, RepoStatus

__all__ = [
    'AgentInvocation',
    'AgentInvocationResult',
    'AgentOutput',
    'VerificationDetails',
    'ByeByeFlagConfig',
    'parse_config',
    'ReviewRecord',
    'ReviewState',
    'ReviewStatus',
    'reduce_review_records',
    'FlagResult',
    'FlagStatus',
    'RunSummary',
    'FlagTask',
    'RemovalRequest',
    'RemovalResult',
    'RemovalStatus',
    'RepoResult',
    'RepoStatus',
]
