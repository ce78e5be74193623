"""LLM client module"""

from disputeflow.llm.client import get_llm_client, LLMClient
from disputeflow.llm.types import LLMResponse

__all__ = ["get_llm_client", "LLMClient", "LLMResponse"]
