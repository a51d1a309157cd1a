"""Data models, schemas and in-memory stores."""

from autodrop.models.store import MemoryStore, AppendOnlyLog
from autodrop.models.schemas import (
    Provider,
    Language,
    AgentStatus,
    WorkflowStatus,
    StepStatus,
    ConversationStatus,
    Priority,
    TargetAgent,
    EventType,
    WORKFLOW_TRANSITIONS,
    GenerationOptions,
    GenerationResult,
    Usage,
    AgentConfig,
    AgentMetrics,
    AgentRecord,
    WorkflowStep,
    AgentWorkflow,
    ConversationMessage,
    AgentConversation,
    AgentHandoff,
    RoutingDecision,
    RoutingResult,
    HealthResponse,
)

__all__ = [
    # Stores
    'MemoryStore',
    'AppendOnlyLog',
    # Enums
    'Provider',
    'Language',
    'AgentStatus',
    'WorkflowStatus',
    'StepStatus',
    'ConversationStatus',
    'Priority',
    'TargetAgent',
    'EventType',
    'WORKFLOW_TRANSITIONS',
    # Entities
    'GenerationOptions',
    'GenerationResult',
    'Usage',
    'AgentConfig',
    'AgentMetrics',
    'AgentRecord',
    'WorkflowStep',
    'AgentWorkflow',
    'ConversationMessage',
    'AgentConversation',
    'AgentHandoff',
    'RoutingDecision',
    'RoutingResult',
    'HealthResponse',
]
