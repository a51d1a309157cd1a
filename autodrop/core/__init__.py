"""Core business logic components."""

from autodrop.core.exceptions import (
    AutoDropError,
    InvalidInput,
    ProviderNotConfigured,
    GenerationFailed,
    GenerationTimeout,
    UnknownAgent,
    AgentUnavailable,
    RateLimitExceeded,
    WorkflowError,
    WorkflowValidationError,
    InvalidStateTransitionError,
    WorkflowNotFound,
    ConversationNotFound,
)
from autodrop.core.event_bus import EventBus

# Note: WorkflowEngine and AgentManager depend on the agent layer and adapters.
# Import them from their modules: from autodrop.core.workflow_engine import WorkflowEngine

__all__ = [
    'AutoDropError',
    'InvalidInput',
    'ProviderNotConfigured',
    'GenerationFailed',
    'GenerationTimeout',
    'UnknownAgent',
    'AgentUnavailable',
    'RateLimitExceeded',
    'WorkflowError',
    'WorkflowValidationError',
    'InvalidStateTransitionError',
    'WorkflowNotFound',
    'ConversationNotFound',
    'EventBus',
]
