"""Agent conversation and inquiry routing endpoints."""

from typing import Optional
import structlog
from fastapi import APIRouter, Depends, Header

from autodrop.api.v1.dependencies import get_conversation_manager, get_system
from autodrop.core.exceptions import InvalidInput
from autodrop.models.schemas import (
    AgentConversation,
    ConversationCreate,
    ConversationListResponse,
    ConversationMessageCreate,
    ConversationStatusUpdate,
    InquiryRequest,
    InquiryResponse,
)

router = APIRouter(tags=["conversations"])
logger = structlog.get_logger()


@router.get("/api/conversations", response_model=ConversationListResponse)
async def list_conversations(manager = Depends(get_conversation_manager)):
    """List all conversations"""
    conversations = await manager.list()
    return ConversationListResponse(conversations=conversations, total=len(conversations))


@router.post("/api/conversations", response_model=AgentConversation)
async def start_conversation(request: ConversationCreate, manager = Depends(get_conversation_manager)):
    """Start a conversation; the initial message is stored as a system message"""
    conversation_id = await manager.start(request.participants, request.topic, request.initial_message)
    return await manager.get(conversation_id)


@router.get("/api/conversations/{conversation_id}", response_model=AgentConversation)
async def get_conversation(conversation_id: str, manager = Depends(get_conversation_manager)):
    """Get conversation by ID"""
    return await manager.get(conversation_id)


@router.post("/api/conversations/{conversation_id}/messages", response_model=AgentConversation)
async def post_message(
    conversation_id: str,
    request: ConversationMessageCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    manager = Depends(get_conversation_manager),
):
    """
    Post a message and collect replies from the other participants.

    Retries carrying the same Idempotency-Key header are delivered once.
    """
    if not request.content.strip():
        raise InvalidInput("Message content cannot be empty")

    appended = await manager.add_message(
        conversation_id,
        request.sender_agent_id,
        request.content,
        idempotency_key=idempotency_key,
        max_depth=request.max_depth,
    )
    logger.info("conversation_message_posted", conversation_id=conversation_id, appended=len(appended))
    return await manager.get(conversation_id)


@router.put("/api/conversations/{conversation_id}/status", response_model=AgentConversation)
async def set_conversation_status(
    conversation_id: str,
    update: ConversationStatusUpdate,
    manager = Depends(get_conversation_manager),
):
    """Set the conversation status"""
    return await manager.set_status(conversation_id, update.status)


@router.post("/api/route", response_model=InquiryResponse)
async def route_inquiry(request: InquiryRequest, system = Depends(get_system)):
    """
    Triage a customer inquiry.

    Always answers with a routing decision; an unusable triage reply falls
    back to customer-service.
    """
    conversation_id, routing = await system.route_inquiry(request.inquiry, request.language)
    return InquiryResponse(routing=routing, conversation_id=conversation_id)
