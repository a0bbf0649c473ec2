"""Shared test fixtures and helpers for grove tests."""

import asyncio
import random
from typing import Optional, Union

from grove.agents.invocation import AgentReply, InvocationRequest
from grove.tree.models import Edge, Heat, TreeNode
from grove.tree.mutations import ReplyItem

Script = Union[list[ReplyItem], Exception]


def node(node_id: str, *children: TreeNode, by: str = "human", heat: Heat = Heat.WARM) -> TreeNode:
	"""Build a node with a label derived from its id."""
	return TreeNode(
		id=node_id,
		label=node_id.title(),
		prose=f"Thoughts about {node_id}",
		heat=heat,
		by=by,
		seen=True,
		children=list(children),
	)


def sample_tree() -> TreeNode:
	"""
	root
	├── a
	│   ├── a1
	│   └── a2
	└── b
	"""
	return node("seed", node("a", node("a1"), node("a2")), node("b"))


def sample_edges() -> list[Edge]:
	return [Edge(source="a1", target="b", label="supports")]


def shape(tree: TreeNode) -> set[tuple[Optional[str], str]]:
	"""(parent_id, node_id) pairs, ignoring sibling order."""
	return {(parent_id, n.id) for parent_id, n in tree.walk()}


def edge_pairs(edges: list[Edge]) -> set[frozenset[str]]:
	return {edge.pair for edge in edges}


class ScriptedInvoker:
	"""
	Agent invoker returning canned replies.

	Scripts are keyed by personality id, with None for the default pass.
	A script is either a list of reply items or an exception to raise.
	A tuple of scripts is consumed one entry per call.
	"""

	def __init__(self, scripts: Optional[dict[Optional[str], object]] = None, delay: float = 0.0):
		self.scripts = scripts or {}
		self.delay = delay
		self.requests: list[InvocationRequest] = []
		self.active = 0
		self.max_active = 0

	def _next_script(self, key: Optional[str]) -> Script:
		script = self.scripts.get(key, [])
		if isinstance(script, tuple):
			# One entry per call; the last one repeats
			if len(script) > 1:
				self.scripts[key] = script[1:]
			return script[0]
		return script

	async def invoke(self, request: InvocationRequest) -> AgentReply:
		self.requests.append(request)
		self.active += 1
		self.max_active = max(self.max_active, self.active)
		try:
			if self.delay:
				await asyncio.sleep(self.delay)
			key = request.personality.id if request.personality else None
			script = self._next_script(key)
			if isinstance(script, Exception):
				raise script
			return AgentReply(items=list(script))
		finally:
			self.active -= 1

	def requests_for(self, personality_id: Optional[str]) -> list[InvocationRequest]:
		return [
			r for r in self.requests
			if (r.personality.id if r.personality else None) == personality_id
		]


class ScriptedRandom(random.Random):
	"""Random source with scripted die rolls and an order-preserving shuffle."""

	def __init__(self, rolls: list[int]):
		super().__init__(0)
		self.rolls = list(rolls)

	def randint(self, a: int, b: int) -> int:
		roll = self.rolls.pop(0) if self.rolls else b
		return max(a, min(b, roll))

	def shuffle(self, x) -> None:
		return None
