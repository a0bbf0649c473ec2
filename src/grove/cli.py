"""CLI for grove: create documents, manage the roster, run heartbeats, and chat."""

import argparse
import asyncio
import logging
import random
import sys

from dotenv import load_dotenv
from rich.console import Console

from .agents.invocation import AnthropicInvoker
from .agents.personalities import get_personality
from .config import Config, load_config
from .errors import GroveError
from .heartbeat.tick import Heartbeat, HeartbeatRunner, TickResult
from .logging_config import setup_logging
from .storage.database import Database
from .visualizer import render_chat, render_personalities, render_tick, render_tree

logger = logging.getLogger(__name__)

console = Console()


async def _open_db(config: Config) -> Database:
	db = Database(str(config.db_path), default_dice_sides=config.default_dice_sides)
	await db.init()
	return db


def _build_heartbeat(config: Config, db: Database, seed: int | None = None) -> Heartbeat:
	if not config.api_key:
		console.print("[red]ANTHROPIC_API_KEY is not set.[/red]")
		sys.exit(1)
	invoker = AnthropicInvoker(
		api_key=config.api_key,
		model=config.model,
		max_tokens=config.max_tokens,
		timeout=config.request_timeout,
	)
	return Heartbeat(
		db,
		invoker,
		rng=random.Random(seed),
		history_limit=config.history_limit,
		max_concurrency=config.max_concurrency,
	)


async def _require_document(db: Database, doc_id: str):
	doc = await db.get_document(doc_id)
	if doc is None:
		console.print(f"[red]Document not found: {doc_id}[/red]")
		sys.exit(1)
	return doc


async def cmd_new(args: argparse.Namespace, config: Config) -> None:
	"""Create a document with the placeholder tree."""
	db = await _open_db(config)
	doc = await db.create_document()
	console.print(doc.id)


async def cmd_show(args: argparse.Namespace, config: Config) -> None:
	"""Render a document's tree and cross-links."""
	db = await _open_db(config)
	doc = await _require_document(db, args.doc_id)
	render_tree(doc.tree, doc.edges, console)


async def cmd_agents(args: argparse.Namespace, config: Config) -> None:
	"""List personalities or set the active roster."""
	db = await _open_db(config)
	await _require_document(db, args.doc_id)

	if args.set is not None:
		unknown = [pid for pid in args.set if get_personality(pid) is None]
		if unknown:
			console.print(f"[red]Unknown personalities: {', '.join(unknown)}[/red]")
			sys.exit(1)
		await db.set_personalities(args.doc_id, args.set)

	active = await db.get_active_personalities(args.doc_id)
	dice_sides = await db.get_dice_sides(args.doc_id)
	render_personalities(active, dice_sides, console)


async def cmd_settings(args: argparse.Namespace, config: Config) -> None:
	"""Update per-document heartbeat settings."""
	db = await _open_db(config)
	await _require_document(db, args.doc_id)
	if args.dice is not None:
		if args.dice < 1:
			console.print("[red]--dice must be at least 1[/red]")
			sys.exit(1)
		await db.set_dice_sides(args.doc_id, args.dice)
	console.print(f"dice_sides = {await db.get_dice_sides(args.doc_id)}")


async def cmd_seen(args: argparse.Namespace, config: Config) -> None:
	"""Acknowledge a node."""
	db = await _open_db(config)
	await _require_document(db, args.doc_id)
	if await db.mark_seen(args.doc_id, args.node_id):
		console.print(f"Marked {args.node_id} as seen")
	else:
		console.print(f"[yellow]No node {args.node_id} in {args.doc_id}[/yellow]")


async def cmd_tick(args: argparse.Namespace, config: Config) -> None:
	"""Run a single heartbeat tick."""
	db = await _open_db(config)
	await _require_document(db, args.doc_id)
	heartbeat = _build_heartbeat(config, db, seed=args.seed)
	result = await heartbeat.run_tick(args.doc_id)
	render_tick(result, console)


async def cmd_chat(args: argparse.Namespace, config: Config) -> None:
	"""Send a message to the default voice, which may edit the tree."""
	db = await _open_db(config)
	await _require_document(db, args.doc_id)
	heartbeat = _build_heartbeat(config, db)
	result = await heartbeat.chat(args.doc_id, args.message, hover_node_id=args.hover)
	render_chat(result, console)


async def cmd_run(args: argparse.Namespace, config: Config) -> None:
	"""Run heartbeat ticks on an interval."""
	db = await _open_db(config)
	await _require_document(db, args.doc_id)
	heartbeat = _build_heartbeat(config, db, seed=args.seed)
	interval = args.interval if args.interval is not None else config.heartbeat_interval

	async def on_tick(result: TickResult) -> None:
		render_tick(result, console)

	runner = HeartbeatRunner(heartbeat, args.doc_id, interval=interval, on_tick=on_tick)
	console.print(f"Heartbeat for {args.doc_id} every {interval:.0f}s (Ctrl+C to stop)")
	completed = await runner.run(max_ticks=args.ticks)
	console.print(f"{completed} tick(s) completed")


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="grove",
		description="Shared thought trees grown by a rotating cast of agent voices",
	)
	parser.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING, ERROR")
	subparsers = parser.add_subparsers(dest="command")

	new_parser = subparsers.add_parser("new", help="Create a document")
	new_parser.set_defaults(func=cmd_new)

	show_parser = subparsers.add_parser("show", help="Show a document's tree")
	show_parser.add_argument("doc_id")
	show_parser.set_defaults(func=cmd_show)

	agents_parser = subparsers.add_parser("agents", help="List or set active personalities")
	agents_parser.add_argument("doc_id")
	agents_parser.add_argument("--set", nargs="*", default=None, metavar="ID", help="Replace the active roster")
	agents_parser.set_defaults(func=cmd_agents)

	settings_parser = subparsers.add_parser("settings", help="Heartbeat settings for a document")
	settings_parser.add_argument("doc_id")
	settings_parser.add_argument("--dice", type=int, default=None, help="Die size bounding speakers per tick")
	settings_parser.set_defaults(func=cmd_settings)

	seen_parser = subparsers.add_parser("seen", help="Mark a node as seen")
	seen_parser.add_argument("doc_id")
	seen_parser.add_argument("node_id")
	seen_parser.set_defaults(func=cmd_seen)

	tick_parser = subparsers.add_parser("tick", help="Run one heartbeat tick")
	tick_parser.add_argument("doc_id")
	tick_parser.add_argument("--seed", type=int, default=None, help="Seed for the die roll and shuffle")
	tick_parser.set_defaults(func=cmd_tick)

	chat_parser = subparsers.add_parser("chat", help="Chat with the default voice about a document")
	chat_parser.add_argument("doc_id")
	chat_parser.add_argument("message")
	chat_parser.add_argument("--hover", type=str, default=None, metavar="NODE", help="Node you are looking at")
	chat_parser.set_defaults(func=cmd_chat)

	run_parser = subparsers.add_parser("run", help="Run heartbeat ticks on an interval")
	run_parser.add_argument("doc_id")
	run_parser.add_argument("--interval", type=float, default=None, help="Seconds between ticks")
	run_parser.add_argument("--ticks", type=int, default=None, help="Stop after N ticks")
	run_parser.add_argument("--seed", type=int, default=None, help="Seed for the die roll and shuffle")
	run_parser.set_defaults(func=cmd_run)

	return parser


def main() -> None:
	"""CLI entry point."""
	load_dotenv()
	parser = build_parser()
	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	config = load_config()
	setup_logging(level=args.log_level, log_dir=config.log_dir)

	try:
		asyncio.run(args.func(args, config))
	except KeyboardInterrupt:
		pass
	except GroveError as e:
		logger.error(str(e))
		console.print(f"[red]{e}[/red]")
		sys.exit(1)


if __name__ == "__main__":
	main()
