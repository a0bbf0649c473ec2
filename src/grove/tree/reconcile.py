"""
Reconciler - merges independently computed agent trees into one.

Every agent in a tick works on its own copy of the same snapshot. The
reconciler diffs each agent's result against the snapshot and grafts only
brand-new nodes and edges onto a shared merged copy, in agent-selection
order.

Only additions survive. Updates and deletes an agent makes to nodes that
existed before the tick stay in that agent's private copy and are
discarded, so concurrent agents never fight over shared nodes.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from .models import Edge, Snapshot, TreeNode, add_child, find_edge, is_placeholder
from .mutations import MutationResult

logger = logging.getLogger(__name__)


@dataclass
class Reconciliation:
	"""Merged tree and edges for a tick."""
	tree: TreeNode
	edges: list[Edge]
	changed: bool


def find_new_nodes(tree: TreeNode, original_ids: set[str]) -> list[tuple[str, TreeNode]]:
	"""
	Collect (parent_id, node) for every non-root node absent from `original_ids`.

	Entries come out in pre-order, so a new node is always listed before any
	of its new descendants. Each recorded node has its children cleared;
	deeper new nodes get their own entries.
	"""
	found: list[tuple[str, TreeNode]] = []
	for parent_id, node in tree.walk():
		if parent_id is None or node.id in original_ids:
			continue
		found.append((parent_id, node.model_copy(update={"children": []}, deep=True)))
	return found


def merge_tree_additions(base: TreeNode, modified: TreeNode, original_ids: set[str]) -> int:
	"""
	Graft the nodes `modified` added since the snapshot onto `base`.

	A node whose id is already present in `base` (another agent got there
	first) or whose parent cannot be found is skipped.

	Returns:
		Number of nodes grafted
	"""
	grafted = 0
	for parent_id, node in find_new_nodes(modified, original_ids):
		if base.find(node.id) is not None:
			logger.debug(f"Skipping new node {node.id}: id already merged")
			continue
		if add_child(base, parent_id, node):
			grafted += 1
		else:
			logger.debug(f"Skipping new node {node.id}: parent {parent_id} not in merged tree")
	return grafted


def adopt_replaced_root(base: TreeNode, modified: TreeNode, original_root_id: str) -> bool:
	"""
	Carry over a placeholder-root replacement made by one agent.

	The first agent to replace the placeholder wins; later replacements are
	ignored once the merged root is no longer the placeholder.
	"""
	if modified.id == original_root_id or not is_placeholder(base):
		return False
	base.id = modified.id
	base.label = modified.label
	base.prose = modified.prose
	base.heat = modified.heat
	base.by = modified.by
	base.seen = modified.seen
	return True


def merge_edges(base: list[Edge], additions: Iterable[Edge], original_edges: Sequence[Edge]) -> int:
	"""
	Append edges whose unordered pair is new since the snapshot.

	Returns:
		Number of edges appended
	"""
	original_pairs = {edge.pair for edge in original_edges}
	appended = 0
	for edge in additions:
		if edge.pair in original_pairs:
			continue
		if find_edge(base, edge.source, edge.target) is not None:
			continue
		base.append(edge.model_copy())
		appended += 1
	return appended


def reconcile(snapshot: Snapshot, outcomes: Sequence[MutationResult]) -> Reconciliation:
	"""
	Merge per-agent outcomes into one tree and edge list.

	Args:
		snapshot: The pre-tick state every outcome was computed from
		outcomes: Successful outcomes, in agent-selection order

	Returns:
		Reconciliation with the merged tree, edges and overall changed flag
	"""
	merged_tree, merged_edges = snapshot.working_copy()
	original_ids = snapshot.node_ids()
	changed = False

	for outcome in outcomes:
		if not outcome.changed:
			continue
		changed = True
		if is_placeholder(snapshot.tree):
			adopt_replaced_root(merged_tree, outcome.tree, snapshot.tree.id)
		merge_tree_additions(merged_tree, outcome.tree, original_ids)

		merged_ids = merged_tree.collect_ids()
		resolvable = [
			edge for edge in outcome.edges
			if edge.source in merged_ids and edge.target in merged_ids
		]
		merge_edges(merged_edges, resolvable, snapshot.edges)

	return Reconciliation(tree=merged_tree, edges=merged_edges, changed=changed)
