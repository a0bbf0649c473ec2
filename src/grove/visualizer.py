"""Rich views for thought trees and heartbeat ticks."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .agents.personalities import PERSONALITIES
from .heartbeat.tick import ChatResult, TickResult
from .tree.models import Edge, Heat, TreeNode

HEAT_STYLES = {
	Heat.HOT: "bold red",
	Heat.WARM: "yellow",
	Heat.GROWING: "green",
	Heat.QUIET: "dim",
}


def _node_text(node: TreeNode) -> str:
	style = HEAT_STYLES.get(node.heat, "")
	unseen = "" if node.seen else " [cyan]*[/cyan]"
	return f"[{style}]{node.label or node.id}[/{style}] [dim]({node.id}, {node.by})[/dim]{unseen}"


def build_tree(node: TreeNode, branch: Optional[Tree] = None) -> Tree:
	"""Build a Rich Tree mirroring the thought tree."""
	if branch is None:
		branch = Tree(_node_text(node))
	else:
		branch = branch.add(_node_text(node))
	for child in node.children:
		build_tree(child, branch)
	return branch


def render_tree(tree: TreeNode, edges: list[Edge], console: Optional[Console] = None) -> None:
	"""Render a thought tree and its cross-links."""
	console = console or Console()
	console.print(build_tree(tree))

	if edges:
		table = Table(title="Cross-links")
		table.add_column("Source")
		table.add_column("Relationship", style="magenta")
		table.add_column("Target")
		for edge in edges:
			table.add_row(edge.source, edge.label, edge.target)
		console.print(table)


def render_tick(result: TickResult, console: Optional[Console] = None) -> None:
	"""Render the per-agent outcome of a tick."""
	console = console or Console()

	if result.default_pass:
		console.print(Panel(result.thinking or "(nothing to add)", title="Default pass", border_style="cyan"))
	else:
		table = Table(title=f"Tick: {', '.join(result.selected)}")
		table.add_column("Personality", style="bold")
		table.add_column("Contributed")
		table.add_column("Thinking")
		for r in result.results:
			status = "[red]error[/red]" if r.error else ("[green]yes[/green]" if r.contributed else "[dim]no[/dim]")
			table.add_row(r.personality, status, r.thinking or "")
		console.print(table)

	console.print(f"[dim]changed={result.changed}, {result.tree.count()} nodes, {len(result.edges)} edges[/dim]")


def render_chat(result: ChatResult, console: Optional[Console] = None) -> None:
	"""Render the reply to a chat message."""
	console = console or Console()
	console.print(Panel(result.reply or "(no reply)", title="Claude", border_style="cyan"))
	if result.changed:
		console.print(f"[dim]tree updated: {result.tree.count()} nodes, {len(result.edges)} edges[/dim]")


def render_personalities(active: list[str], dice_sides: int, console: Optional[Console] = None) -> None:
	"""Render the available personalities, marking the active roster."""
	console = console or Console()
	table = Table(title=f"Personalities (d{dice_sides})")
	table.add_column("", width=1)
	table.add_column("ID")
	table.add_column("Name", style="bold")
	table.add_column("Category")
	table.add_column("Description", style="dim")
	for p in PERSONALITIES:
		mark = "[green]*[/green]" if p.id in active else ""
		table.add_row(mark, p.id, f"[{p.color}]{p.name}[/{p.color}]", p.category, p.short_description)
	console.print(table)
