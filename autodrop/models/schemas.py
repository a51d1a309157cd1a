"""
Pydantic schemas for entities, API requests and responses.
Includes enums for workflow/conversation state and the workflow state machine.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal, Any, List, Dict
from enum import Enum
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current time"""
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================


class Provider(str, Enum):
    """Supported text generation providers"""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


class Language(str, Enum):
    """Response language preference"""

    EN = "en"
    AR = "ar"
    BOTH = "both"


class AgentStatus(str, Enum):
    """Agent record statuses"""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class WorkflowStatus(str, Enum):
    """Workflow state machine states"""

    DRAFT = "draft"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"  # Reserved: only set by callers


class StepStatus(str, Enum):
    """Workflow step statuses"""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ConversationStatus(str, Enum):
    """Conversation statuses (set by callers, no enforced order)"""

    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Priority(str, Enum):
    """Routing priority"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TargetAgent(str, Enum):
    """Agents the triage router may dispatch to"""

    CUSTOMER_SERVICE = "customer-service"
    PRODUCT_RESEARCH = "product-research"
    MARKETING = "marketing"
    ORDER_MANAGEMENT = "order-management"
    ANALYTICS = "analytics"


class EventType(str, Enum):
    """Event types for the event bus"""

    WORKFLOW_CREATED = "workflow.created"
    WORKFLOW_STARTED = "workflow.started"
    WORKFLOW_STATUS_CHANGED = "workflow.status_changed"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_FAILED = "workflow.failed"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    HANDOFF_EXECUTED = "handoff.executed"
    HANDOFF_DETECTED = "handoff.detected"
    CONVERSATION_STARTED = "conversation.started"
    CONVERSATION_MESSAGE = "conversation.message"
    INQUIRY_ROUTED = "inquiry.routed"


# ============================================================================
# State Machine Configuration
# ============================================================================

# Valid workflow transitions
WORKFLOW_TRANSITIONS = {
    WorkflowStatus.DRAFT: [WorkflowStatus.RUNNING, WorkflowStatus.PAUSED],
    WorkflowStatus.RUNNING: [WorkflowStatus.COMPLETED, WorkflowStatus.FAILED],
    WorkflowStatus.PAUSED: [WorkflowStatus.DRAFT],
    WorkflowStatus.COMPLETED: [],  # Terminal
    WorkflowStatus.FAILED: [],  # Terminal - no resumption
}


# ============================================================================
# Text Generation
# ============================================================================


class GenerationOptions(BaseModel):
    """Per-call generation options"""

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)
    language: Language = Language.EN


class Usage(BaseModel):
    """Token accounting reported by the provider"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerationResult(BaseModel):
    """Result of a single text generation call"""

    content: str
    usage: Usage = Field(default_factory=Usage)
    model: str
    provider: Provider


# ============================================================================
# Agent Records (external registry)
# ============================================================================


class AgentConfig(BaseModel):
    """Provider/model configuration of a registered agent"""

    model: str
    provider: Provider
    temperature: float = 0.7
    max_tokens: int = 1000
    system_prompt: str = ""
    language: Language = Language.BOTH


class AgentMetrics(BaseModel):
    """Invocation metrics written as a side effect of agent calls"""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    avg_response_time: float = 0  # milliseconds
    uptime_percentage: float = 100.0
    last_active: Optional[datetime] = None


class AgentRecord(BaseModel):
    """Registered agent with its configuration and metrics"""

    id: str
    name: str
    type: str
    status: AgentStatus = AgentStatus.ACTIVE
    config: AgentConfig
    metrics: AgentMetrics = Field(default_factory=AgentMetrics)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AgentConfigUpdate(BaseModel):
    """Partial agent configuration update"""

    model: Optional[str] = None
    provider: Optional[Provider] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    system_prompt: Optional[str] = None
    language: Optional[Language] = None


# ============================================================================
# Workflow Entities
# ============================================================================


class WorkflowStep(BaseModel):
    """One unit of agent work inside a workflow"""

    id: str
    agent_id: str
    action: str
    input: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class AgentWorkflow(BaseModel):
    """A DAG of agent steps executed in dependency waves"""

    id: str
    name: str
    description: str = ""
    steps: List[WorkflowStep]
    status: WorkflowStatus = WorkflowStatus.DRAFT
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[Dict[str, str]] = None

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


# ============================================================================
# Conversation / Handoff Entities
# ============================================================================


class ConversationMessage(BaseModel):
    """Single message in a multi-agent conversation (immutable)"""

    model_config = ConfigDict(frozen=True)

    id: str
    agent_id: str = Field(..., description="Sender agent id, or 'system'")
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AgentConversation(BaseModel):
    """Conversation between a set of agents"""

    id: str
    participants: List[str]
    topic: str
    messages: List[ConversationMessage] = Field(default_factory=list)
    status: ConversationStatus = ConversationStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)


class AgentHandoff(BaseModel):
    """Transfer of context and data from one agent to another (immutable)"""

    model_config = ConfigDict(frozen=True)

    from_agent: str
    to_agent: str
    context: str
    data: Any = None
    instructions: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class HandoffDirective(BaseModel):
    """Handoff as emitted by an agent in the structured JSON channel"""

    to_agent: str
    context: str
    data: Any = None
    instructions: Optional[str] = None


# ============================================================================
# Triage
# ============================================================================


class RoutingDecision(BaseModel):
    """Routing decision produced by the triage agent"""

    target_agent: TargetAgent = TargetAgent.CUSTOMER_SERVICE
    context: str = "Default routing - content analysis needed"
    priority: Priority = Priority.MEDIUM
    reasoning: str = "Automated routing based on content analysis"


class RoutingResult(RoutingDecision):
    """Routing decision plus the triage agent's reply to the customer"""

    response: str = ""


# ============================================================================
# API Request Schemas
# ============================================================================


class WorkflowStepCreate(BaseModel):
    """Step definition in a workflow creation request"""

    id: Optional[str] = Field(None, description="Step id (defaults to step_<n>)")
    agent_id: str = Field(..., description="Agent executing the step")
    action: str = Field(..., description="Action label passed to the agent")
    input: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)


class WorkflowCreate(BaseModel):
    """Request to create a new workflow"""

    name: str
    description: str = ""
    steps: List[WorkflowStepCreate] = Field(..., min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkflowStatusUpdate(BaseModel):
    """Request to set a workflow status externally"""

    status: WorkflowStatus


class ConversationCreate(BaseModel):
    """Request to start a conversation"""

    participants: List[str] = Field(..., min_length=1)
    topic: str
    initial_message: Optional[str] = None


class ConversationMessageCreate(BaseModel):
    """Request to post a message into a conversation"""

    sender_agent_id: str
    content: str
    max_depth: Optional[int] = Field(None, ge=1, description="Fan-out depth (defaults to settings)")


class ConversationStatusUpdate(BaseModel):
    """Request to set a conversation status"""

    status: ConversationStatus


class InquiryRequest(BaseModel):
    """Customer inquiry to be triaged"""

    inquiry: str = Field(..., min_length=1)
    language: Literal["en", "ar"] = "en"


class HandoffRequest(BaseModel):
    """Request to execute a handoff"""

    from_agent: str
    to_agent: str
    context: str
    data: Any = None
    instructions: Optional[str] = None


class AgentChatRequest(BaseModel):
    """Message sent to a single agent through the production path"""

    message: str
    language: Language = Language.EN
    user_id: str = "anonymous"


class GenerateRequest(BaseModel):
    """Raw text generation request"""

    provider: Provider
    model: str
    prompt: str = Field(..., min_length=1)
    system_prompt: Optional[str] = None
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class ApiKeysUpdate(BaseModel):
    """Provider keys to store at runtime"""

    gemini: Optional[str] = None
    openai: Optional[str] = None
    anthropic: Optional[str] = None


class ProductResearchRequest(BaseModel):
    """Input for the product research to marketing workflow"""

    query: str = Field(..., min_length=1)


class OrderProcessingRequest(BaseModel):
    """Input for the order to customer service workflow"""

    order: Dict[str, Any]


# ============================================================================
# API Response Schemas
# ============================================================================


class WorkflowListResponse(BaseModel):
    """List of workflows"""

    workflows: List[AgentWorkflow]
    total: int


class ConversationListResponse(BaseModel):
    """List of conversations"""

    conversations: List[AgentConversation]
    total: int


class InquiryResponse(BaseModel):
    """Triage outcome plus the conversation started for it"""

    routing: RoutingResult
    conversation_id: str


class HandoffResponse(BaseModel):
    """Reply of the agent that received a handoff"""

    response: str
    from_agent: str
    to_agent: str


class AgentChatResponse(BaseModel):
    """Reply from an agent through the production path"""

    response: str
    agent_id: str
    timestamp: datetime = Field(default_factory=utcnow)


class GenerateResponse(BaseModel):
    """Raw generation result"""

    success: bool = True
    response: GenerationResult


class ApiKeysStatus(BaseModel):
    """Masked view of stored provider keys"""

    gemini: str = ""
    openai: str = ""
    anthropic: str = ""
    configured: Dict[str, bool] = Field(default_factory=dict)


class CrossAgentResponse(BaseModel):
    """Report produced by a cross-agent workflow"""

    workflow: str
    report: str


class ErrorResponse(BaseModel):
    """Standard error response"""

    error: str


class HealthResponse(BaseModel):
    """Health check response"""

    status: Literal["healthy", "unhealthy"]
    agents: int = 0
    uptime_seconds: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)
    version: str = "1.0.0"
