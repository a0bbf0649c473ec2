"""Tree module - Thought tree model, mutation engine, and reconciler."""

from .models import (
	Document,
	Edge,
	Heat,
	Message,
	PendingQuestion,
	Snapshot,
	TreeNode,
	agent_tag,
	default_tree,
)
from .mutations import MutationResult, apply_operations, parse_operation
from .reconcile import Reconciliation, reconcile

__all__ = [
	"TreeNode",
	"Edge",
	"Heat",
	"Document",
	"Message",
	"PendingQuestion",
	"Snapshot",
	"agent_tag",
	"default_tree",
	"MutationResult",
	"apply_operations",
	"parse_operation",
	"Reconciliation",
	"reconcile",
]
