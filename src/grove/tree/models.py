"""
Tree Models - Pydantic schemas for the shared thought tree.

Defines the recursive node type, cross-link edges, and the documents,
messages and questions that surround them, plus the primitive traversal
and mutation helpers the mutation engine and reconciler build on.

The tree is a single rooted ownership hierarchy. Parents are found by
traversal; nodes never hold a reference back to their parent.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Iterator, Optional

from pydantic import BaseModel, Field

PLACEHOLDER_ROOT_ID = "root"

HUMAN_TAG = "human"
SHARED_AGENT_TAG = "claude"
SYSTEM_TAG = "system"


def agent_tag(personality_id: str) -> str:
	"""Attribution tag for content contributed by a personality."""
	return f"agent:{personality_id}"


class Heat(str, Enum):
	"""Relative salience of a thought."""
	HOT = "hot"
	WARM = "warm"
	GROWING = "growing"
	QUIET = "quiet"


class TreeNode(BaseModel):
	"""A single thought and the thoughts it owns."""
	id: str = Field(description="Globally unique node identifier")
	label: str = Field(default="", description="Short display text")
	prose: str = Field(default="", description="Full thought text")
	heat: Heat = Field(default=Heat.WARM)
	by: str = Field(default=HUMAN_TAG, description="Who contributed this thought")
	seen: bool = Field(default=False, description="Whether the human has acknowledged it")
	children: list["TreeNode"] = Field(default_factory=list)

	def find(self, node_id: str) -> Optional["TreeNode"]:
		"""Depth-first (pre-order) lookup of the first node with this id."""
		if self.id == node_id:
			return self
		for child in self.children:
			found = child.find(node_id)
			if found is not None:
				return found
		return None

	def walk(self, parent_id: Optional[str] = None) -> Iterator[tuple[Optional[str], "TreeNode"]]:
		"""Yield (parent_id, node) pairs in pre-order. The root's parent is None."""
		yield parent_id, self
		for child in self.children:
			yield from child.walk(self.id)

	def collect_ids(self) -> set[str]:
		return {node.id for _, node in self.walk()}

	def count(self) -> int:
		return sum(1 for _ in self.walk())

	def mark_seen(self, node_id: str) -> bool:
		"""Set `seen` on the first matching node. Returns whether it was found."""
		node = self.find(node_id)
		if node is None:
			return False
		node.seen = True
		return True


class Edge(BaseModel):
	"""
	Cross-link between two nodes.

	Edges are unordered: an edge between A and B is the same edge as one
	between B and A for uniqueness and lookup.
	"""
	source: str
	target: str
	label: str = ""

	@property
	def pair(self) -> frozenset[str]:
		return frozenset((self.source, self.target))

	def connects(self, a: str, b: str) -> bool:
		return self.pair == frozenset((a, b))

	def touches(self, node_id: str) -> bool:
		return self.source == node_id or self.target == node_id


class Document(BaseModel):
	"""A thinking tree and its cross-links, as persisted."""
	id: str
	tree: TreeNode
	edges: list[Edge] = Field(default_factory=list)
	created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
	updated_at: str = Field(default_factory=lambda: datetime.now().isoformat())


class Message(BaseModel):
	"""One line of the conversation transcript for a document."""
	id: Optional[int] = None
	doc_id: str
	role: str
	content: str
	hover_node_id: Optional[str] = None
	personality: Optional[str] = None
	created_at: Optional[str] = None


class PendingQuestion(BaseModel):
	"""A question one agent raised for another, delivered on the next tick."""
	id: Optional[int] = None
	doc_id: str
	from_agent: str
	to_agent: str
	question: str


@dataclass(frozen=True)
class Snapshot:
	"""
	The (tree, edges) state frozen at the start of a tick.

	All per-agent diffs are computed against it. Nothing mutates a snapshot;
	agents work on `working_copy()`.
	"""
	tree: TreeNode
	edges: tuple[Edge, ...] = field(default_factory=tuple)

	@classmethod
	def take(cls, tree: TreeNode, edges: Iterable[Edge]) -> "Snapshot":
		return cls(
			tree=tree.model_copy(deep=True),
			edges=tuple(edge.model_copy() for edge in edges),
		)

	def node_ids(self) -> set[str]:
		return self.tree.collect_ids()

	def working_copy(self) -> tuple[TreeNode, list[Edge]]:
		return self.tree.model_copy(deep=True), [edge.model_copy() for edge in self.edges]


def default_tree() -> TreeNode:
	"""The placeholder root every new document starts from."""
	return TreeNode(
		id=PLACEHOLDER_ROOT_ID,
		label="New grove",
		prose="A fresh space for thinking together. Share what's on your mind.",
		heat=Heat.WARM,
		by=SYSTEM_TAG,
		seen=True,
	)


def is_placeholder(tree: TreeNode) -> bool:
	"""True while the tree is still the untouched placeholder root."""
	return tree.id == PLACEHOLDER_ROOT_ID and not tree.children


def add_child(tree: TreeNode, parent_id: str, child: TreeNode) -> bool:
	"""Append `child` under the first node matching `parent_id`."""
	parent = tree.find(parent_id)
	if parent is None:
		return False
	parent.children.append(child)
	return True


def update_node(
	tree: TreeNode,
	node_id: str,
	label: Optional[str] = None,
	prose: Optional[str] = None,
	heat: Optional[Heat] = None,
) -> bool:
	"""Update only the supplied fields of the first matching node."""
	node = tree.find(node_id)
	if node is None:
		return False
	if label is not None:
		node.label = label
	if prose is not None:
		node.prose = prose
	if heat is not None:
		node.heat = heat
	return True


def delete_node(tree: TreeNode, node_id: str) -> bool:
	"""
	Remove the first non-root node matching `node_id`.

	Its direct children move up one level, appended after the former
	parent's remaining children in their original order.
	"""
	for index, child in enumerate(tree.children):
		if child.id == node_id:
			removed = tree.children.pop(index)
			tree.children.extend(removed.children)
			return True
		if delete_node(child, node_id):
			return True
	return False


def find_edge(edges: Iterable[Edge], a: str, b: str) -> Optional[Edge]:
	"""Find the edge joining `a` and `b` in either direction."""
	for edge in edges:
		if edge.connects(a, b):
			return edge
	return None
