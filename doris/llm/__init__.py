"""Model gateway, prompt assembly and intent classification."""

from doris.llm.gateway import ModelGateway, ModelReply
from doris.llm.intent import should_offer_tools
from doris.llm.prompt import ClientContext, build_system_prompt

__all__ = [
    "ClientContext",
    "ModelGateway",
    "ModelReply",
    "build_system_prompt",
    "should_offer_tools",
]
