"""
Mutation Engine - applies agent-requested operations to a working tree.

An agent's reply is an ordered list of items: free-text fragments and
typed operations. `apply_operations` plays them, strictly in order,
against a private deep copy of a (tree, edges) pair and reports the new
state, the emitted text, whether anything structural was attempted, and
the questions raised for other agents.

Lookup misses and add_node calls reusing an id already in the tree are
dropped silently. The two exceptions are a duplicate edge, which leaves
a note in the emitted text, and deleting the root, which is refused.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field, ValidationError

from .models import (
	PLACEHOLDER_ROOT_ID,
	Edge,
	Heat,
	TreeNode,
	add_child,
	delete_node,
	find_edge,
	is_placeholder,
	update_node,
)

logger = logging.getLogger(__name__)


class AddNode(BaseModel):
	"""Attach a new thought under an existing one."""
	tool: Literal["add_node"] = "add_node"
	parent_id: str = Field(default=PLACEHOLDER_ROOT_ID)
	id: str
	label: str = ""
	prose: str = ""
	heat: Heat = Heat.WARM


class UpdateNode(BaseModel):
	"""Change the supplied fields of an existing thought."""
	tool: Literal["update_node"] = "update_node"
	id: str
	label: Optional[str] = None
	prose: Optional[str] = None
	heat: Optional[Heat] = None


class AddEdge(BaseModel):
	tool: Literal["add_edge"] = "add_edge"
	source: str
	target: str
	label: str = ""


class UpdateEdge(BaseModel):
	tool: Literal["update_edge"] = "update_edge"
	source: str
	target: str
	label: str = ""


class RemoveEdge(BaseModel):
	tool: Literal["remove_edge"] = "remove_edge"
	source: str
	target: str


class DeleteNode(BaseModel):
	tool: Literal["delete_node"] = "delete_node"
	id: str


class RaiseQuestion(BaseModel):
	"""A question for another agent, delivered on the next tick."""
	tool: Literal["ask_agent"] = "ask_agent"
	to_agent: str = ""
	question: str = ""


Operation = Union[AddNode, UpdateNode, AddEdge, UpdateEdge, RemoveEdge, DeleteNode, RaiseQuestion]
ReplyItem = Union[str, Operation]

OPERATION_TYPES: dict[str, type[BaseModel]] = {
	"add_node": AddNode,
	"update_node": UpdateNode,
	"add_edge": AddEdge,
	"update_edge": UpdateEdge,
	"remove_edge": RemoveEdge,
	"delete_node": DeleteNode,
	"ask_agent": RaiseQuestion,
}

# Operations that count towards the "changed" flag
STRUCTURAL_TOOLS = frozenset({
	"add_node", "update_node", "add_edge", "update_edge", "remove_edge", "delete_node",
})


def parse_operation(name: str, payload: Optional[dict[str, Any]]) -> Optional[Operation]:
	"""
	Convert a raw tool call into a typed operation.

	Unknown tools and payloads that fail validation are dropped.

	Returns:
		The operation, or None if the call is unusable
	"""
	op_type = OPERATION_TYPES.get(name)
	if op_type is None:
		logger.debug(f"Ignoring unknown tool: {name}")
		return None
	data = {k: v for k, v in (payload or {}).items() if v is not None and k != "tool"}
	try:
		return op_type.model_validate(data)
	except ValidationError as e:
		logger.debug(f"Ignoring malformed {name} call: {e.error_count()} validation error(s)")
		return None


@dataclass
class MutationResult:
	"""The outcome of applying one agent's reply to its working copy."""
	tree: TreeNode
	edges: list[Edge]
	text: str = ""
	changed: bool = False
	questions: list[tuple[str, str]] = field(default_factory=list)

	@property
	def thinking(self) -> Optional[str]:
		return self.text or None


class TreeMutator:
	"""Applies operations to a private working copy of a tree and its edges."""

	def __init__(self, tree: TreeNode, edges: Sequence[Edge], by: str):
		self.tree = tree.model_copy(deep=True)
		self.edges = [edge.model_copy() for edge in edges]
		self.by = by
		self.changed = False
		self.questions: list[tuple[str, str]] = []
		self._text_parts: list[str] = []

	def apply(self, item: ReplyItem) -> None:
		if isinstance(item, str):
			if item:
				self._text_parts.append(item)
			return

		if item.tool in STRUCTURAL_TOOLS:
			self.changed = True
		handler = getattr(self, f"_{item.tool}")
		handler(item)

	def result(self) -> MutationResult:
		return MutationResult(
			tree=self.tree,
			edges=self.edges,
			text="\n".join(self._text_parts),
			changed=self.changed,
			questions=list(self.questions),
		)

	def _add_node(self, op: AddNode) -> None:
		# Node ids are unique across the whole tree, the root included
		if self.tree.find(op.id) is not None:
			logger.debug(f"add_node: id {op.id} already in the tree, dropping")
			return

		# The first contribution replaces the "empty tree" placeholder
		if op.parent_id == PLACEHOLDER_ROOT_ID and is_placeholder(self.tree):
			self.tree.id = op.id
			self.tree.label = op.label
			self.tree.prose = op.prose
			self.tree.heat = op.heat
			self.tree.by = self.by
			self.tree.seen = False
			return

		child = TreeNode(
			id=op.id,
			label=op.label,
			prose=op.prose,
			heat=op.heat,
			by=self.by,
			seen=False,
		)
		if not add_child(self.tree, op.parent_id, child):
			logger.debug(f"add_node: parent {op.parent_id} not found, dropping {op.id}")

	def _update_node(self, op: UpdateNode) -> None:
		update_node(self.tree, op.id, label=op.label, prose=op.prose, heat=op.heat)

	def _add_edge(self, op: AddEdge) -> None:
		if self.tree.find(op.source) is None or self.tree.find(op.target) is None:
			return
		if find_edge(self.edges, op.source, op.target) is not None:
			self._text_parts.append(
				f"(Skipped edge {op.source} -> {op.target}: these nodes are already linked. "
				f"Use update_edge to change the relationship label.)"
			)
			return
		self.edges.append(Edge(source=op.source, target=op.target, label=op.label))

	def _update_edge(self, op: UpdateEdge) -> None:
		edge = find_edge(self.edges, op.source, op.target)
		if edge is not None:
			edge.label = op.label

	def _remove_edge(self, op: RemoveEdge) -> None:
		self.edges = [edge for edge in self.edges if not edge.connects(op.source, op.target)]

	def _delete_node(self, op: DeleteNode) -> None:
		if not op.id or op.id == self.tree.id:
			logger.debug(f"delete_node: refusing to delete root {op.id!r}")
			return
		if delete_node(self.tree, op.id):
			self.edges = [edge for edge in self.edges if not edge.touches(op.id)]

	def _ask_agent(self, op: RaiseQuestion) -> None:
		if op.to_agent and op.question:
			self.questions.append((op.to_agent, op.question))


def apply_operations(
	tree: TreeNode,
	edges: Sequence[Edge],
	items: Sequence[ReplyItem],
	by: str,
) -> MutationResult:
	"""
	Apply an agent's reply to a copy of (tree, edges).

	Args:
		tree: Tree to start from (left untouched)
		edges: Edges to start from (left untouched)
		items: Text fragments and operations, in the order the agent produced them
		by: Attribution tag stamped on every node this reply creates

	Returns:
		MutationResult with the new state, joined text, changed flag and questions
	"""
	mutator = TreeMutator(tree, edges, by)
	for item in items:
		mutator.apply(item)
	return mutator.result()
