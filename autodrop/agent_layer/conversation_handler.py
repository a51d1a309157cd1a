"""
Conversation Manager for multi-agent conversations.

A message posted into a conversation is fanned out to every other
participant through the production invocation path; their non-empty replies
are appended as messages of their own. Replies are re-broadcast only while the
requested fan-out depth allows it.
"""

import asyncio
import uuid
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from autodrop.config.settings import settings
from autodrop.core.agent_manager import AgentManager
from autodrop.core.exceptions import ConversationNotFound, InvalidInput
from autodrop.models.schemas import (
    AgentConversation,
    ConversationMessage,
    ConversationStatus,
    EventType,
)
from autodrop.models.store import MemoryStore

logger = structlog.get_logger()

SYSTEM_SENDER = "system"


class ConversationManager:
    """
    Owns conversations and their messages.

    Inbound messages may carry an idempotency key: a repeated key returns the
    messages recorded the first time without appending or fanning out again.
    Only the most recent `idempotency_cache_size` keys are remembered.
    """

    def __init__(
        self,
        agent_manager: AgentManager,
        event_bus=None,
        store: Optional[MemoryStore[AgentConversation]] = None,
        max_depth: Optional[int] = None,
        idempotency_cache_size: Optional[int] = None,
    ):
        self.agent_manager = agent_manager
        self.event_bus = event_bus
        self.store = store if store is not None else MemoryStore("conversations")
        self.max_depth = max_depth if max_depth is not None else settings.conversation_fanout_max_depth
        self.idempotency_cache_size = idempotency_cache_size or settings.conversation_idempotency_cache_size
        self._idempotency: "OrderedDict[Tuple[str, str], asyncio.Future]" = OrderedDict()
        self._idempotency_lock = asyncio.Lock()
        logger.info("conversation_manager_initialized", max_depth=self.max_depth)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self, participants: Sequence[str], topic: str, initial_message: Optional[str] = None) -> str:
        """
        Start a conversation.

        Args:
            participants: Ordered agent ids
            topic: Conversation topic (used in fan-out prompts)
            initial_message: Optional opening message, stored as a system message

        Returns:
            The new conversation id
        """
        if not participants:
            raise InvalidInput("A conversation needs at least one participant")

        conversation = AgentConversation(
            id=f"conv_{uuid.uuid4().hex}",
            participants=list(participants),
            topic=topic,
        )
        if initial_message:
            conversation.messages.append(self._new_message(SYSTEM_SENDER, initial_message))

        await self.store.put(conversation.id, conversation)

        logger.info(
            "conversation_started",
            conversation_id=conversation.id,
            participants=conversation.participants,
            topic=topic,
        )
        await self._publish(
            EventType.CONVERSATION_STARTED,
            {"conversation_id": conversation.id, "participants": conversation.participants, "topic": topic},
        )
        return conversation.id

    async def get(self, conversation_id: str) -> AgentConversation:
        conversation = await self.store.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    async def list(self) -> List[AgentConversation]:
        conversations = await self.store.values()
        return sorted(conversations, key=lambda c: c.created_at, reverse=True)

    async def set_status(self, conversation_id: str, status: ConversationStatus) -> AgentConversation:
        """Set any status; callers own the conversation lifecycle"""

        def apply(conversation: AgentConversation):
            conversation.status = status

        conversation = await self.store.update(conversation_id, apply)
        if conversation is None:
            raise ConversationNotFound(conversation_id)

        logger.info("conversation_status_changed", conversation_id=conversation_id, status=status.value)
        return conversation

    # ========================================================================
    # Messages
    # ========================================================================

    async def add_message(
        self,
        conversation_id: str,
        sender_agent_id: str,
        text: str,
        idempotency_key: Optional[str] = None,
        max_depth: Optional[int] = None,
    ) -> List[ConversationMessage]:
        """
        Append a message and fan it out to the other participants.

        Args:
            conversation_id: Target conversation
            sender_agent_id: Agent id of the sender
            text: Message content
            idempotency_key: Deduplicates retried deliveries of the same message
            max_depth: Fan-out depth (defaults to the configured depth)

        Returns:
            The messages appended by this call: the message itself followed by
            the replies it triggered

        Raises:
            ConversationNotFound: If the conversation id is unknown
        """
        # Fail fast before claiming the idempotency key
        await self.get(conversation_id)

        if idempotency_key is None:
            return await self._deliver(conversation_id, sender_agent_id, text, max_depth)

        key = (conversation_id, idempotency_key)
        async with self._idempotency_lock:
            existing = self._idempotency.get(key)
            if existing is None:
                future = asyncio.get_running_loop().create_future()
                self._idempotency[key] = future
                self._evict_idempotency_keys()

        if existing is not None:
            logger.info(
                "conversation_message_deduplicated",
                conversation_id=conversation_id,
                idempotency_key=idempotency_key,
            )
            return list(await asyncio.shield(existing))

        try:
            appended = await self._deliver(conversation_id, sender_agent_id, text, max_depth)
        except BaseException as e:
            # Let a later retry with the same key try again
            async with self._idempotency_lock:
                self._idempotency.pop(key, None)
            future.set_exception(e)
            # Mark the exception as retrieved when nobody else is waiting
            future.exception()
            raise

        future.set_result(appended)
        return list(appended)

    def _evict_idempotency_keys(self):
        """Forget the oldest finished deliveries beyond the cache size"""
        while len(self._idempotency) > self.idempotency_cache_size:
            oldest = next((key for key, future in self._idempotency.items() if future.done()), None)
            if oldest is None:
                return
            del self._idempotency[oldest]

    async def _deliver(
        self, conversation_id: str, sender_agent_id: str, text: str, max_depth: Optional[int]
    ) -> List[ConversationMessage]:
        depth = max_depth if max_depth is not None else self.max_depth
        message = await self._append(conversation_id, sender_agent_id, text)
        replies = await self._fan_out(conversation_id, sender_agent_id, text, depth)
        return [message] + replies

    async def _append(
        self, conversation_id: str, agent_id: str, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> ConversationMessage:
        message = self._new_message(agent_id, content, metadata)

        def apply(conversation: AgentConversation):
            conversation.messages = conversation.messages + [message]

        conversation = await self.store.update(conversation_id, apply)
        if conversation is None:
            raise ConversationNotFound(conversation_id)

        logger.debug("conversation_message_added", conversation_id=conversation_id, agent_id=agent_id)
        await self._publish(
            EventType.CONVERSATION_MESSAGE,
            {"conversation_id": conversation_id, "message_id": message.id, "agent_id": agent_id},
        )
        return message

    async def _fan_out(
        self, conversation_id: str, sender_agent_id: str, text: str, depth: int
    ) -> List[ConversationMessage]:
        """Ask every other participant to respond; re-broadcast replies while depth remains"""
        if depth < 1:
            return []

        conversation = await self.get(conversation_id)
        recipients = [p for p in dict.fromkeys(conversation.participants) if p != sender_agent_id]
        if not recipients:
            return []

        prompt = (
            f'In conversation "{conversation.topic}", {sender_agent_id} said: "{text}". '
            "Please respond if relevant to your expertise."
        )
        replies = await asyncio.gather(
            *[self._ask(conversation_id, recipient, prompt) for recipient in recipients]
        )

        appended = []
        for recipient, reply in zip(recipients, replies):
            if reply and reply.strip():
                appended.append(
                    await self._append(conversation_id, recipient, reply, metadata={"in_reply_to": sender_agent_id})
                )

        if depth > 1:
            for message in list(appended):
                appended.extend(
                    await self._fan_out(conversation_id, message.agent_id, message.content, depth - 1)
                )
        return appended

    async def _ask(self, conversation_id: str, agent_id: str, prompt: str) -> Optional[str]:
        try:
            return await self.agent_manager.process_message(agent_id, prompt, user_id=SYSTEM_SENDER)
        except Exception as e:
            logger.error(
                "conversation_participant_failed",
                conversation_id=conversation_id,
                agent_id=agent_id,
                error=str(e),
            )
            return None

    @staticmethod
    def _new_message(agent_id: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> ConversationMessage:
        return ConversationMessage(
            id=f"msg_{uuid.uuid4().hex}",
            agent_id=agent_id,
            content=content,
            metadata=metadata or {},
        )

    async def _publish(self, event_type: EventType, data: dict):
        if self.event_bus:
            await self.event_bus.publish(event_type, data)
