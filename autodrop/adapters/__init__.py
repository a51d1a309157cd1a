"""External collaborators: LLM providers, agent registry, chat log."""

from autodrop.adapters.llm import CredentialStore, TextGenerationClient
from autodrop.adapters.agent_directory import AgentDirectory, default_agents
from autodrop.adapters.chat_log import ChatLogStore
from autodrop.adapters.supabase import SupabaseClient, SupabaseError

__all__ = [
    'CredentialStore',
    'TextGenerationClient',
    'AgentDirectory',
    'default_agents',
    'ChatLogStore',
    'SupabaseClient',
    'SupabaseError',
]
