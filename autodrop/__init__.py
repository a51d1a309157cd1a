"""AutoDrop multi-agent orchestration core."""

# Configuration and security
from autodrop.config import (
    settings,
    sanitize_input,
)

# Core components
from autodrop.core import (
    AutoDropError,
    EventBus,
)

# Models and schemas
from autodrop.models import (
    AgentWorkflow,
    AgentConversation,
    AgentHandoff,
    RoutingResult,
)

# Adapters
from autodrop.adapters import (
    CredentialStore,
    TextGenerationClient,
    AgentDirectory,
    ChatLogStore,
)

# Agent Layer components
from autodrop.agent_layer import (
    SingleAgent,
    TriageRouter,
    HandoffExecutor,
    ConversationManager,
)
from autodrop.core.agent_manager import AgentManager
from autodrop.core.workflow_engine import WorkflowEngine
from autodrop.agent_layer.orchestrator import MultiAgentSystem

__version__ = "1.0.0"

__all__ = [
    # Config
    'settings',
    'sanitize_input',
    # Core
    'AutoDropError',
    'EventBus',
    'AgentManager',
    'WorkflowEngine',
    # Models
    'AgentWorkflow',
    'AgentConversation',
    'AgentHandoff',
    'RoutingResult',
    # Adapters
    'CredentialStore',
    'TextGenerationClient',
    'AgentDirectory',
    'ChatLogStore',
    # Agent Layer
    'SingleAgent',
    'TriageRouter',
    'HandoffExecutor',
    'ConversationManager',
    'MultiAgentSystem',
]
