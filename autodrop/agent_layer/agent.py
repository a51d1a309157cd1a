"""
Single Agent: one persona bound to a provider/model.

An agent turns a message history into one generation call and reads any
handoff requests out of the reply. `run` always produces a reply (degrading to
a fallback or an apology); `respond` lets generation failures propagate.
"""

import json
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, Type, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field

from autodrop.adapters.llm import TextGenerationClient
from autodrop.agent_layer.handoff import HANDOFF_FORMAT_INSTRUCTIONS, extract_handoffs, extract_json
from autodrop.config.settings import settings
from autodrop.core.exceptions import ProviderNotConfigured
from autodrop.models.schemas import AgentHandoff, GenerationOptions, Language, Provider

logger = structlog.get_logger()

APOLOGY_MESSAGE = "I apologize, but I'm currently unable to process your request. Please try again later."


class AgentProfile(BaseModel):
    """Static configuration of an agent persona"""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    name: str
    instructions: str
    provider: Provider = Provider.OPENAI
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1000
    department: Optional[str] = None
    capabilities: Tuple[str, ...] = ()


class AgentContext(BaseModel):
    """Mutable context carried into the system prompt (set by handoffs)"""

    model_config = ConfigDict(validate_assignment=True)

    handoff_from: Optional[str] = None
    handoff_context: Optional[str] = None
    handoff_data: Any = None


class AgentMessage(BaseModel):
    """One turn of an agent conversation"""

    role: Literal["system", "user", "assistant"]
    content: str


class AgentRunResult(BaseModel):
    """
    Outcome of one agent run.

    `kind` tags the variant: a plain reply, or a reply that also requests
    handoffs to other agents.
    """

    messages: List[AgentMessage]
    handoffs: Tuple[AgentHandoff, ...] = ()
    structured_output: Optional[Dict[str, Any]] = None
    fallback: bool = Field(default=False, description="Reply is the unconfigured-provider fallback")

    @computed_field
    @property
    def kind(self) -> Literal["reply", "reply_with_handoffs"]:
        return "reply_with_handoffs" if self.handoffs else "reply"

    @property
    def reply(self) -> str:
        return self.messages[-1].content if self.messages else ""


MessagesInput = Sequence[Union[AgentMessage, Dict[str, str]]]


class SingleAgent:
    """An agent persona bound to the text generation client"""

    def __init__(
        self,
        profile: AgentProfile,
        client: TextGenerationClient,
        fallback_message: Optional[str] = None,
    ):
        self.profile = profile
        self.client = client
        self.context = AgentContext()
        self.fallback_message = fallback_message or settings.fallback_message

    @property
    def agent_id(self) -> str:
        return self.profile.agent_id

    @property
    def name(self) -> str:
        return self.profile.name

    def set_context(self, **values):
        """Overwrite context keys (last write wins)"""
        for key, value in values.items():
            setattr(self.context, key, value)

    def build_system_prompt(self, structured_output: Optional[Type[BaseModel]] = None) -> str:
        """
        Instructions, then the non-empty context as JSON, then the handoff
        format (and the JSON-only instruction when structured output is requested).
        """
        prompt = self.profile.instructions

        context: Dict[str, Any] = {}
        if self.profile.department:
            context["department"] = self.profile.department
        if self.profile.capabilities:
            context["capabilities"] = list(self.profile.capabilities)
        context.update(self.context.model_dump(exclude_none=True))

        if context:
            prompt += f"\n\nContext Information:\n{json.dumps(context, indent=2, ensure_ascii=False, default=str)}"

        prompt += f"\n\n{HANDOFF_FORMAT_INSTRUCTIONS}"

        if structured_output is not None:
            schema = json.dumps(structured_output.model_json_schema(), ensure_ascii=False)
            prompt += (
                "\n\nRespond ONLY with a JSON object (no prose) that matches this JSON schema:\n"
                f"{schema}"
            )
        return prompt

    @staticmethod
    def normalize_messages(messages: MessagesInput) -> List[AgentMessage]:
        return [m if isinstance(m, AgentMessage) else AgentMessage.model_validate(m) for m in messages]

    @staticmethod
    def flatten(messages: List[AgentMessage]) -> str:
        """Render a history as 'role: content' lines"""
        return "\n".join(f"{m.role}: {m.content}" for m in messages)

    def _parse_structured(self, reply: str, structured_output: Type[BaseModel]) -> Optional[Dict[str, Any]]:
        document = extract_json(reply)
        if not isinstance(document, dict):
            return None
        try:
            return structured_output.model_validate(document).model_dump(mode="json")
        except ValidationError as e:
            logger.warning(
                "structured_output_invalid",
                agent_id=self.agent_id,
                schema=structured_output.__name__,
                error=str(e),
            )
            return None

    async def respond(
        self,
        messages: MessagesInput,
        structured_output: Optional[Type[BaseModel]] = None,
        language: Language = Language.EN,
    ) -> AgentRunResult:
        """
        Run the agent, letting GenerationFailed propagate.

        A provider without credentials still yields the configured fallback
        reply.

        Raises:
            GenerationFailed: If the provider call fails or times out
        """
        history = self.normalize_messages(messages)
        system_prompt = self.build_system_prompt(structured_output)

        try:
            result = await self.client.generate(
                self.profile.provider,
                self.profile.model,
                self.flatten(history),
                system_prompt=system_prompt,
                options=GenerationOptions(
                    temperature=self.profile.temperature,
                    max_tokens=self.profile.max_tokens,
                    language=language,
                ),
            )
        except ProviderNotConfigured as e:
            logger.warning("agent_using_fallback", agent_id=self.agent_id, provider=e.provider)
            return AgentRunResult(
                messages=history + [AgentMessage(role="assistant", content=self.fallback_message)],
                fallback=True,
            )

        reply = result.content
        handoffs = extract_handoffs(reply, self.name)
        structured = self._parse_structured(reply, structured_output) if structured_output else None

        if handoffs:
            logger.info(
                "agent_requested_handoffs",
                agent_id=self.agent_id,
                targets=[h.to_agent for h in handoffs],
            )

        return AgentRunResult(
            messages=history + [AgentMessage(role="assistant", content=reply)],
            handoffs=handoffs,
            structured_output=structured,
        )

    async def run(
        self,
        messages: MessagesInput,
        structured_output: Optional[Type[BaseModel]] = None,
        language: Language = Language.EN,
    ) -> AgentRunResult:
        """
        Run the agent; any failure becomes an in-character apology reply.
        """
        try:
            return await self.respond(messages, structured_output=structured_output, language=language)
        except Exception as e:
            logger.error(
                "agent_run_failed",
                agent_id=self.agent_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            history = self.normalize_messages(messages)
            return AgentRunResult(messages=history + [AgentMessage(role="assistant", content=APOLOGY_MESSAGE)])
