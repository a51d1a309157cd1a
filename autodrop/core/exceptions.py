"""
Error taxonomy for the orchestration core.

Each error carries the HTTP status the API layer reports it with.
"""

from typing import Optional


class AutoDropError(Exception):
    """Base class for all orchestration errors"""

    status_code = 500


class InvalidInput(AutoDropError):
    """Raised when a request payload is malformed or empty"""

    status_code = 400


class ProviderNotConfigured(AutoDropError):
    """Raised when a provider has no credentials configured"""

    status_code = 503

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"{provider.upper()}_API_KEY is not configured. Please add it in Settings > API Keys "
            f"or set the {provider.upper()}_API_KEY environment variable."
        )


class GenerationFailed(AutoDropError):
    """Raised when a provider call fails or returns no text"""

    status_code = 500

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class GenerationTimeout(GenerationFailed):
    """Raised when a provider call exceeds the configured timeout"""

    status_code = 504


class UnknownAgent(AutoDropError):
    """Raised when an agent id is not registered"""

    status_code = 404

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} not found")


class AgentUnavailable(AutoDropError):
    """Raised when an agent exists but is not active"""

    status_code = 503

    def __init__(self, agent_id: str, status: str):
        self.agent_id = agent_id
        self.status = status
        super().__init__(f"Agent {agent_id} is currently {status}")


class RateLimitExceeded(AutoDropError):
    """Raised when an agent received too many requests in the current window"""

    status_code = 429

    def __init__(self, agent_id: str, retry_after: float = 0.0):
        self.agent_id = agent_id
        self.retry_after = retry_after
        super().__init__("Rate limit exceeded. Please try again later.")


class WorkflowError(AutoDropError):
    """Raised when a workflow cannot make progress"""

    status_code = 500


class WorkflowValidationError(WorkflowError):
    """Raised when a workflow definition is invalid"""

    status_code = 400


class InvalidStateTransitionError(WorkflowError):
    """Raised when attempting an invalid workflow status transition"""

    status_code = 409


class WorkflowNotFound(AutoDropError):
    """Raised when a workflow id is unknown"""

    status_code = 404

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} not found")


class ConversationNotFound(AutoDropError):
    """Raised when a conversation id is unknown"""

    status_code = 404

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")
