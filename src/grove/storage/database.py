"""
SQLite-backed storage for documents, transcripts, roster settings and
pending agent questions.

Trees and edges are stored as pydantic JSON. The heartbeat writes the
outcome of a whole tick through `commit_tick`, which applies the merged
tree, the new transcript lines and the question ledger changes in a single
transaction.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite
from pydantic import TypeAdapter

from ..errors import DocumentNotFoundError, PersistenceError
from ..tree.models import Document, Edge, Message, PendingQuestion, TreeNode, default_tree

logger = logging.getLogger(__name__)

_EDGES = TypeAdapter(list[Edge])

DEFAULT_DICE_SIDES = 3


def generate_short_id() -> str:
	"""Short, URL-friendly document id."""
	return str(uuid.uuid4())[:8]


def _document_from_row(row: aiosqlite.Row) -> Document:
	return Document(
		id=row["id"],
		tree=TreeNode.model_validate_json(row["tree"]),
		edges=_EDGES.validate_json(row["edges"] or "[]"),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
	)


def _question_from_row(row: aiosqlite.Row) -> PendingQuestion:
	return PendingQuestion(
		id=row["id"],
		doc_id=row["doc_id"],
		from_agent=row["from_agent"],
		to_agent=row["to_agent"],
		question=row["question"],
	)


class Database:
	"""
	Document, message, settings and question store.

	Usage:
		db = Database("data/grove.db")
		await db.init()

		doc = await db.create_document()
		await db.set_personalities(doc.id, ["feynman", "munger"])
	"""

	def __init__(self, db_path: str = "", default_dice_sides: int = DEFAULT_DICE_SIDES):
		if not db_path:
			from ..config import get_config
			db_path = str(get_config().db_path)
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self.default_dice_sides = default_dice_sides

	async def init(self):
		"""Initialize database schema."""
		async with aiosqlite.connect(self.db_path) as db:
			await db.executescript("""
				CREATE TABLE IF NOT EXISTS documents (
					id TEXT PRIMARY KEY,
					tree TEXT NOT NULL,
					edges TEXT NOT NULL DEFAULT '[]',
					created_at TEXT NOT NULL,
					updated_at TEXT NOT NULL
				);

				CREATE TABLE IF NOT EXISTS messages (
					id INTEGER PRIMARY KEY AUTOINCREMENT,
					doc_id TEXT NOT NULL REFERENCES documents(id),
					role TEXT NOT NULL,
					content TEXT NOT NULL,
					hover_node_id TEXT,
					personality TEXT,
					created_at TEXT NOT NULL
				);

				CREATE TABLE IF NOT EXISTS doc_personalities (
					doc_id TEXT NOT NULL,
					personality_id TEXT NOT NULL,
					PRIMARY KEY (doc_id, personality_id)
				);

				CREATE TABLE IF NOT EXISTS doc_settings (
					doc_id TEXT PRIMARY KEY,
					heartbeat_dice_sides INTEGER NOT NULL
				);

				CREATE TABLE IF NOT EXISTS agent_questions (
					id INTEGER PRIMARY KEY AUTOINCREMENT,
					doc_id TEXT NOT NULL,
					from_agent TEXT NOT NULL,
					to_agent TEXT NOT NULL,
					question TEXT NOT NULL,
					created_at TEXT NOT NULL
				);

				CREATE INDEX IF NOT EXISTS idx_messages_doc ON messages(doc_id);
				CREATE INDEX IF NOT EXISTS idx_questions_doc_to ON agent_questions(doc_id, to_agent);
			""")
			await db.commit()
		logger.debug(f"Database initialized: {self.db_path}")

	# Documents

	async def create_document(self, doc_id: Optional[str] = None) -> Document:
		"""Create a document holding the placeholder tree."""
		now = datetime.now().isoformat()
		doc = Document(
			id=doc_id or generate_short_id(),
			tree=default_tree(),
			created_at=now,
			updated_at=now,
		)
		async with aiosqlite.connect(self.db_path) as db:
			await db.execute(
				"INSERT INTO documents (id, tree, edges, created_at, updated_at) VALUES (?, ?, '[]', ?, ?)",
				(doc.id, doc.tree.model_dump_json(), doc.created_at, doc.updated_at),
			)
			await db.commit()
		logger.info(f"Created document {doc.id}")
		return doc

	async def get_document(self, doc_id: str) -> Optional[Document]:
		async with aiosqlite.connect(self.db_path) as db:
			db.row_factory = aiosqlite.Row
			async with db.execute(
				"SELECT * FROM documents WHERE id = ?", (doc_id,)
			) as cursor:
				row = await cursor.fetchone()
				return _document_from_row(row) if row else None

	async def update_tree(self, doc_id: str, tree: TreeNode, edges: list[Edge]):
		async with aiosqlite.connect(self.db_path) as db:
			await self._write_tree(db, doc_id, tree, edges)
			await db.commit()

	async def mark_seen(self, doc_id: str, node_id: str) -> bool:
		"""Mark a node as acknowledged by the human. Returns whether it was found."""
		doc = await self.get_document(doc_id)
		if doc is None:
			raise DocumentNotFoundError(doc_id)
		if not doc.tree.mark_seen(node_id):
			return False
		await self.update_tree(doc_id, doc.tree, doc.edges)
		return True

	# Messages

	async def add_message(
		self,
		doc_id: str,
		role: str,
		content: str,
		hover_node_id: Optional[str] = None,
		personality: Optional[str] = None,
	):
		async with aiosqlite.connect(self.db_path) as db:
			await self._insert_message(db, doc_id, role, content, hover_node_id, personality)
			await db.commit()

	async def get_messages(self, doc_id: str, limit: int) -> list[Message]:
		"""Most recent `limit` messages, oldest first."""
		async with aiosqlite.connect(self.db_path) as db:
			db.row_factory = aiosqlite.Row
			async with db.execute(
				"SELECT * FROM messages WHERE doc_id = ? ORDER BY id DESC LIMIT ?",
				(doc_id, limit),
			) as cursor:
				rows = await cursor.fetchall()
		messages = [Message(**dict(row)) for row in rows]
		messages.reverse()
		return messages

	# Roster and settings

	async def get_active_personalities(self, doc_id: str) -> list[str]:
		async with aiosqlite.connect(self.db_path) as db:
			async with db.execute(
				"SELECT personality_id FROM doc_personalities WHERE doc_id = ? ORDER BY personality_id",
				(doc_id,),
			) as cursor:
				rows = await cursor.fetchall()
				return [row[0] for row in rows]

	async def set_personalities(self, doc_id: str, personality_ids: Iterable[str]):
		"""Replace the active roster for a document."""
		async with aiosqlite.connect(self.db_path) as db:
			await db.execute("DELETE FROM doc_personalities WHERE doc_id = ?", (doc_id,))
			await db.executemany(
				"INSERT OR IGNORE INTO doc_personalities (doc_id, personality_id) VALUES (?, ?)",
				[(doc_id, pid) for pid in personality_ids],
			)
			await db.commit()

	async def get_dice_sides(self, doc_id: str) -> int:
		async with aiosqlite.connect(self.db_path) as db:
			async with db.execute(
				"SELECT heartbeat_dice_sides FROM doc_settings WHERE doc_id = ?", (doc_id,)
			) as cursor:
				row = await cursor.fetchone()
				return row[0] if row else self.default_dice_sides

	async def set_dice_sides(self, doc_id: str, sides: int):
		if sides < 1:
			raise ValueError(f"Die must have at least one side, got {sides}")
		async with aiosqlite.connect(self.db_path) as db:
			await db.execute(
				"""
				INSERT INTO doc_settings (doc_id, heartbeat_dice_sides) VALUES (?, ?)
				ON CONFLICT(doc_id) DO UPDATE SET heartbeat_dice_sides = excluded.heartbeat_dice_sides
				""",
				(doc_id, sides),
			)
			await db.commit()

	# Agent questions

	async def get_reserved_agents(self, doc_id: str) -> list[str]:
		"""Agents with at least one pending question addressed to them."""
		async with aiosqlite.connect(self.db_path) as db:
			async with db.execute(
				"SELECT DISTINCT to_agent FROM agent_questions WHERE doc_id = ? ORDER BY to_agent",
				(doc_id,),
			) as cursor:
				rows = await cursor.fetchall()
				return [row[0] for row in rows]

	async def get_pending_questions_for(self, doc_id: str, agent_id: str) -> list[PendingQuestion]:
		async with aiosqlite.connect(self.db_path) as db:
			db.row_factory = aiosqlite.Row
			async with db.execute(
				"SELECT * FROM agent_questions WHERE doc_id = ? AND to_agent = ? ORDER BY id",
				(doc_id, agent_id),
			) as cursor:
				rows = await cursor.fetchall()
				return [_question_from_row(row) for row in rows]

	async def insert_questions(self, questions: Iterable[PendingQuestion]):
		async with aiosqlite.connect(self.db_path) as db:
			await self._insert_questions(db, questions)
			await db.commit()

	# Ticks

	async def commit_tick(
		self,
		doc_id: str,
		tree: Optional[TreeNode],
		edges: Optional[list[Edge]],
		messages: Iterable[Message] = (),
		consumed_question_ids: Iterable[int] = (),
		new_questions: Iterable[PendingQuestion] = (),
	):
		"""
		Persist everything a tick produced, all or nothing.

		Args:
			doc_id: Document the tick ran against
			tree: Merged tree, or None to leave the stored tree untouched
			edges: Merged edges (ignored when tree is None)
			messages: Transcript lines to append
			consumed_question_ids: Questions delivered this tick, to delete
			new_questions: Questions raised this tick, for the next tick

		Raises:
			PersistenceError: If the transaction fails; nothing is written
		"""
		try:
			async with aiosqlite.connect(self.db_path) as db:
				try:
					if tree is not None:
						await self._write_tree(db, doc_id, tree, edges or [])
					for msg in messages:
						await self._insert_message(
							db, doc_id, msg.role, msg.content, msg.hover_node_id, msg.personality
						)
					await db.executemany(
						"DELETE FROM agent_questions WHERE doc_id = ? AND id = ?",
						[(doc_id, qid) for qid in consumed_question_ids],
					)
					await self._insert_questions(db, new_questions)
					await db.commit()
				except aiosqlite.Error:
					await db.rollback()
					raise
		except aiosqlite.Error as e:
			logger.error(f"Failed to persist tick for {doc_id}: {e}")
			raise PersistenceError(f"Failed to persist tick for {doc_id}: {e}") from e

	# Internal helpers sharing a connection

	async def _write_tree(self, db: aiosqlite.Connection, doc_id: str, tree: TreeNode, edges: list[Edge]):
		await db.execute(
			"UPDATE documents SET tree = ?, edges = ?, updated_at = ? WHERE id = ?",
			(
				tree.model_dump_json(),
				_EDGES.dump_json(edges).decode(),
				datetime.now().isoformat(),
				doc_id,
			),
		)

	async def _insert_message(
		self,
		db: aiosqlite.Connection,
		doc_id: str,
		role: str,
		content: str,
		hover_node_id: Optional[str],
		personality: Optional[str],
	):
		await db.execute(
			"""
			INSERT INTO messages (doc_id, role, content, hover_node_id, personality, created_at)
			VALUES (?, ?, ?, ?, ?, ?)
			""",
			(doc_id, role, content, hover_node_id, personality, datetime.now().isoformat()),
		)

	async def _insert_questions(self, db: aiosqlite.Connection, questions: Iterable[PendingQuestion]):
		now = datetime.now().isoformat()
		await db.executemany(
			"""
			INSERT INTO agent_questions (doc_id, from_agent, to_agent, question, created_at)
			VALUES (?, ?, ?, ?, ?)
			""",
			[(q.doc_id, q.from_agent, q.to_agent, q.question, now) for q in questions],
		)
