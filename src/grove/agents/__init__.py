"""Agents module - Personality roster and the agent invocation boundary."""

from .invocation import AgentInvoker, AgentReply, AnthropicInvoker, InvocationRequest
from .personalities import PERSONALITIES, Personality, get_personality

__all__ = [
	"AgentInvoker",
	"AgentReply",
	"AnthropicInvoker",
	"InvocationRequest",
	"PERSONALITIES",
	"Personality",
	"get_personality",
]
