"""
Agent invocation - the boundary between the heartbeat and the model.

The heartbeat only depends on the `AgentInvoker` protocol: hand it a
snapshot, the recent transcript, an optional personality and any pending
questions, get back an ordered list of text fragments and operations.

`AnthropicInvoker` is the production implementation. It calls the
Anthropic Messages API over aiohttp, exposes the tree operations as tools,
and converts the response content blocks back into reply items.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import aiohttp

from ..errors import InvocationError
from ..tree.models import Edge, Message, PendingQuestion, TreeNode
from ..tree.mutations import ReplyItem, parse_operation
from .personalities import Personality

logger = logging.getLogger(__name__)


@dataclass
class InvocationRequest:
	"""Everything one agent sees for one tick."""
	tree: TreeNode
	edges: list[Edge]
	messages: list[Message] = field(default_factory=list)
	personality: Optional[Personality] = None
	questions: list[PendingQuestion] = field(default_factory=list)
	# Set for a human-directed chat turn instead of a heartbeat
	chat_message: Optional[str] = None
	hover_node_id: Optional[str] = None


@dataclass
class AgentReply:
	"""Text fragments and operations, in the order the agent produced them."""
	items: list[ReplyItem] = field(default_factory=list)


class AgentInvoker(Protocol):
	async def invoke(self, request: InvocationRequest) -> AgentReply:
		...


_HEAT_SCHEMA = {
	"type": "string",
	"enum": ["hot", "warm", "growing", "quiet"],
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
	{
		"name": "add_node",
		"description": "Add a new thought as a child of an existing node.",
		"input_schema": {
			"type": "object",
			"properties": {
				"parent_id": {"type": "string", "description": "ID of the existing parent node"},
				"id": {"type": "string", "description": "Unique ID for the new node (kebab-case)"},
				"label": {"type": "string", "description": "Short name shown in the bubble"},
				"prose": {"type": "string", "description": "Full thought text"},
				"heat": _HEAT_SCHEMA,
			},
			"required": ["parent_id", "id", "label", "prose", "heat"],
		},
	},
	{
		"name": "update_node",
		"description": "Update the label, prose or heat of an existing node.",
		"input_schema": {
			"type": "object",
			"properties": {
				"id": {"type": "string"},
				"label": {"type": "string"},
				"prose": {"type": "string"},
				"heat": _HEAT_SCHEMA,
			},
			"required": ["id"],
		},
	},
	{
		"name": "add_edge",
		"description": "Cross-link two existing nodes with a relationship label. One link per pair of nodes.",
		"input_schema": {
			"type": "object",
			"properties": {
				"source": {"type": "string"},
				"target": {"type": "string"},
				"label": {"type": "string", "description": "e.g. 'contradicts', 'builds on', 'supports'"},
			},
			"required": ["source", "target", "label"],
		},
	},
	{
		"name": "update_edge",
		"description": "Change the relationship label of an existing cross-link.",
		"input_schema": {
			"type": "object",
			"properties": {
				"source": {"type": "string"},
				"target": {"type": "string"},
				"label": {"type": "string"},
			},
			"required": ["source", "target", "label"],
		},
	},
	{
		"name": "remove_edge",
		"description": "Remove the cross-link between two nodes.",
		"input_schema": {
			"type": "object",
			"properties": {
				"source": {"type": "string"},
				"target": {"type": "string"},
			},
			"required": ["source", "target"],
		},
	},
	{
		"name": "delete_node",
		"description": (
			"Remove a node. Its children move up to its parent and any cross-links "
			"touching it are removed. The root cannot be deleted."
		),
		"input_schema": {
			"type": "object",
			"properties": {"id": {"type": "string"}},
			"required": ["id"],
		},
	},
	{
		"name": "ask_agent",
		"description": "Ask another voice a question. They get a turn on the next heartbeat to answer.",
		"input_schema": {
			"type": "object",
			"properties": {
				"to_agent": {"type": "string", "description": "Personality ID of the voice to ask"},
				"question": {"type": "string"},
			},
			"required": ["to_agent", "question"],
		},
	},
]


def system_prompt(request: InvocationRequest) -> str:
	"""Render the tree, edges and voice into a system prompt."""
	tree_json = request.tree.model_dump_json(indent=2)
	edges_json = json.dumps([edge.model_dump() for edge in request.edges], indent=2)

	parts = []
	if request.personality:
		parts.append(
			f"You are {request.personality.name}, a voice contributing to a shared thinking tree."
		)
		parts.append(request.personality.voice)
	elif request.chat_message is not None:
		parts.append("You are Claude, collaborating with a human on a shared thinking tree.")
	else:
		parts.append("You are Claude, periodically checking in on a shared thinking tree.")
	parts.extend([
		"",
		"<tree>",
		tree_json,
		"</tree>",
		"",
		"<edges>",
		edges_json,
		"</edges>",
		"",
	])
	if request.chat_message is not None:
		parts.append(
			"The human is chatting with you while looking at the tree. You are told which "
			"node they are hovering over, if any. Use the tools when you want to change the "
			"tree; sometimes conversation is enough. Keep replies concise and natural."
		)
	else:
		parts.append(
			"This is a heartbeat. Contribute with the tools if you have something meaningful "
			"to add, or say briefly that the tree is fine as it is."
		)
	return "\n".join(parts)


def chat_turns(request: InvocationRequest) -> list[dict[str, str]]:
	"""Recent transcript as alternating turns, ending with the human's message and hover focus."""
	turns = [
		{"role": "user" if msg.role == "human" else "assistant", "content": msg.content}
		for msg in request.messages
	]
	content = request.chat_message or ""
	hovered = request.tree.find(request.hover_node_id) if request.hover_node_id else None
	if hovered is not None:
		content = f'[Looking at node "{hovered.label}": {hovered.prose}]\n\n{content}'
	turns.append({"role": "user", "content": content})
	return turns


def conversation(request: InvocationRequest) -> list[dict[str, str]]:
	"""
	Build the conversation sent with a request.

	A heartbeat gets a single user turn carrying the transcript and any
	pending questions. A chat turn gets the transcript as real turns.
	"""
	if request.chat_message is not None:
		return chat_turns(request)

	lines = []
	if request.messages:
		lines.append("Recent conversation:")
		lines.append("")
		for msg in request.messages:
			if msg.role == "human":
				speaker = "Human"
			else:
				speaker = msg.personality or "Claude"
			lines.append(f"{speaker}: {msg.content}")
			lines.append("")
		lines.append("---")
		lines.append("")

	if request.questions:
		lines.append("Other voices asked you:")
		for q in request.questions:
			lines.append(f"- {q.from_agent}: {q.question}")
		lines.append("")

	name = request.personality.name if request.personality else "Claude"
	lines.append(f"This is your periodic heartbeat as {name}.")
	return [{"role": "user", "content": "\n".join(lines)}]


def parse_reply(response: dict[str, Any]) -> AgentReply:
	"""
	Convert Messages API content blocks into reply items.

	Raises:
		InvocationError: If the response carries no content list
	"""
	content = response.get("content")
	if not isinstance(content, list):
		raise InvocationError("No content in response")

	items: list[ReplyItem] = []
	for block in content:
		block_type = block.get("type")
		if block_type == "text":
			text = block.get("text") or ""
			if text:
				items.append(text)
		elif block_type == "tool_use":
			op = parse_operation(block.get("name", ""), block.get("input"))
			if op is not None:
				items.append(op)
	return AgentReply(items=items)


class AnthropicInvoker:
	"""Invokes agents through the Anthropic Messages API."""

	API_URL = "https://api.anthropic.com/v1/messages"
	API_VERSION = "2023-06-01"

	def __init__(
		self,
		api_key: str,
		model: str = "claude-opus-4-6",
		max_tokens: int = 16000,
		timeout: float = 300.0,
	):
		self.api_key = api_key
		self.model = model
		self.max_tokens = max_tokens
		self.timeout = timeout

	def build_request_body(self, request: InvocationRequest) -> dict[str, Any]:
		return {
			"model": self.model,
			"max_tokens": self.max_tokens,
			"system": system_prompt(request),
			"messages": conversation(request),
			"tools": TOOL_DEFINITIONS,
		}

	async def invoke(self, request: InvocationRequest) -> AgentReply:
		body = self.build_request_body(request)
		response = await self._call_api(body)
		return parse_reply(response)

	async def _call_api(self, body: dict[str, Any]) -> dict[str, Any]:
		headers = {
			"x-api-key": self.api_key,
			"anthropic-version": self.API_VERSION,
			"content-type": "application/json",
		}
		try:
			async with aiohttp.ClientSession(
				timeout=aiohttp.ClientTimeout(total=self.timeout),
			) as session:
				async with session.post(self.API_URL, json=body, headers=headers) as response:
					text = await response.text()
					if response.status != 200:
						raise InvocationError(f"Anthropic API error ({response.status}): {text[:500]}")
		except aiohttp.ClientError as e:
			raise InvocationError(f"Anthropic API request failed: {e}") from e
		except TimeoutError as e:
			raise InvocationError(f"Anthropic API request timed out after {self.timeout}s") from e

		try:
			return json.loads(text)
		except json.JSONDecodeError as e:
			raise InvocationError(f"Invalid JSON from Anthropic API: {e}") from e
