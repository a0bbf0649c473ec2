"""
Heartbeat - one tick of multi-agent participation and reconciliation.

Per tick:
1. Load the snapshot, recent transcript, roster and die size
2. No roster: run a single default pass and return
3. Roll the die, shuffle the roster, add agents owed a reserved slot
4. Resolve ids to personalities (none resolvable: default pass)
5. Fan out one mutation run per personality against the same snapshot
6. Reconcile the successful runs, update the question ledger, persist

`Heartbeat.chat` answers a human message with the default voice outside
the tick cycle. Ticks and chat turns of one document are serialized by a
per-document lock. Persisting a tick or a chat turn is a single
transaction.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ..agents.invocation import AgentInvoker, InvocationRequest
from ..agents.personalities import Personality, get_personality
from ..errors import DocumentNotFoundError
from ..storage.database import Database
from ..tree.models import (
	HUMAN_TAG,
	SHARED_AGENT_TAG,
	Edge,
	Message,
	PendingQuestion,
	Snapshot,
	TreeNode,
	agent_tag,
)
from ..tree.mutations import MutationResult, apply_operations
from ..tree.reconcile import reconcile
from .fanout import FanOut, FanOutItem
from .ledger import QuestionLedger
from .selection import Selection, select_agents

logger = logging.getLogger(__name__)


@dataclass
class AgentResult:
	"""What one selected personality did this tick."""
	personality: str
	thinking: Optional[str] = None
	contributed: bool = False
	error: Optional[str] = None


@dataclass
class TickResult:
	thinking: Optional[str]
	tree: TreeNode
	edges: list[Edge]
	changed: bool
	results: list[AgentResult] = field(default_factory=list)
	selected: list[str] = field(default_factory=list)
	default_pass: bool = False


@dataclass
class ChatResult:
	"""The default voice's answer to one human message."""
	reply: Optional[str]
	tree: TreeNode
	edges: list[Edge]
	changed: bool


# Reply recorded when the voice only grew the tree
TREE_ONLY_REPLY = "(Added new thoughts to the tree.)"


@dataclass
class _AgentRun:
	personality: Personality
	questions: list[PendingQuestion]


class Heartbeat:
	"""
	Runs ticks for documents.

	Args:
		db: Document, transcript, settings and question store
		invoker: Agent invocation service
		rng: Random source for the die roll and shuffle
		history_limit: How many recent messages each agent sees
		max_concurrency: Cap on in-flight agent runs (0 for no cap)
		resolve: Maps a selected id to a personality, None if unknown
	"""

	def __init__(
		self,
		db: Database,
		invoker: AgentInvoker,
		rng: Optional[random.Random] = None,
		history_limit: int = 20,
		max_concurrency: int = 0,
		resolve: Callable[[str], Optional[Personality]] = get_personality,
	):
		self.db = db
		self.invoker = invoker
		self.rng = rng or random.Random()
		self.history_limit = history_limit
		self.resolve = resolve
		self._fanout: FanOut[_AgentRun, MutationResult] = FanOut(max_concurrency=max_concurrency)
		self._locks: dict[str, asyncio.Lock] = {}

	def _lock_for(self, doc_id: str) -> asyncio.Lock:
		lock = self._locks.get(doc_id)
		if lock is None:
			lock = self._locks[doc_id] = asyncio.Lock()
		return lock

	async def run_tick(self, doc_id: str) -> TickResult:
		"""
		Run one tick for a document and persist its outcome.

		Raises:
			DocumentNotFoundError: If the document does not exist
			InvocationError: If the single default pass fails
			PersistenceError: If the merged result cannot be written
		"""
		async with self._lock_for(doc_id):
			return await self._run_tick(doc_id)

	async def _run_tick(self, doc_id: str) -> TickResult:
		doc = await self.db.get_document(doc_id)
		if doc is None:
			raise DocumentNotFoundError(doc_id)

		snapshot = Snapshot.take(doc.tree, doc.edges)
		messages = await self.db.get_messages(doc_id, self.history_limit)
		roster = await self.db.get_active_personalities(doc_id)

		if not roster:
			return await self._default_pass(doc_id, snapshot, messages)

		ledger = QuestionLedger(self.db, doc_id)
		dice_sides = await self.db.get_dice_sides(doc_id)
		reserved = await ledger.reserved_agents()

		# Roll and shuffle complete here, before anything is dispatched
		selection = select_agents(roster, dice_sides, reserved, self.rng)
		logger.info(
			f"Tick {doc_id}: rolled {selection.roll} on d{dice_sides}, "
			f"selected {selection.dice_selected}, reserved {selection.reserved}"
		)

		pending = await ledger.pending_for(selection.selected)
		consumed = ledger.consumed_ids(pending)

		runs = []
		for agent_id in selection.selected:
			personality = self.resolve(agent_id)
			if personality is None:
				logger.warning(f"Tick {doc_id}: unknown personality {agent_id}, skipping")
				continue
			runs.append(FanOutItem(
				id=personality.id,
				data=_AgentRun(personality=personality, questions=pending.get(agent_id, [])),
			))

		if not runs:
			logger.warning(f"Tick {doc_id}: no selected personality resolved, running default pass")
			return await self._default_pass(
				doc_id, snapshot, messages, selection=selection, consumed=consumed
			)

		async def handler(item: FanOutItem[_AgentRun]) -> MutationResult:
			return await self._run_agent(snapshot, messages, item.data)

		summary = await self._fanout.execute(runs, handler)

		results: list[AgentResult] = []
		outcomes: list[MutationResult] = []
		thinking_parts: list[str] = []
		transcript: list[Message] = []
		outgoing: list[PendingQuestion] = []

		for item, run_result in zip(runs, summary.results):
			personality = item.data.personality
			if not run_result.success:
				logger.warning(f"Tick {doc_id}: {personality.id} failed: {run_result.error}")
				results.append(AgentResult(
					personality=personality.id,
					thinking=f"(Error: {run_result.error})",
					contributed=False,
					error=run_result.error,
				))
				continue

			outcome = run_result.result
			outcomes.append(outcome)
			if outcome.thinking:
				thinking_parts.append(f"**{personality.name}**: {outcome.thinking}")
				transcript.append(Message(
					doc_id=doc_id,
					role="assistant",
					content=outcome.thinking,
					personality=personality.id,
				))
			outgoing.extend(ledger.outgoing(personality.id, outcome.questions))
			results.append(AgentResult(
				personality=personality.id,
				thinking=outcome.thinking,
				contributed=outcome.changed,
			))

		merged = reconcile(snapshot, outcomes)

		await self.db.commit_tick(
			doc_id,
			tree=merged.tree if merged.changed else None,
			edges=merged.edges if merged.changed else None,
			messages=transcript,
			consumed_question_ids=consumed,
			new_questions=outgoing,
		)

		logger.info(
			f"Tick {doc_id}: {summary.succeeded}/{summary.total} agents ok, "
			f"changed={merged.changed}, {merged.tree.count()} nodes, "
			f"{len(outgoing)} question(s) queued"
		)

		return TickResult(
			thinking="\n\n".join(thinking_parts) or None,
			tree=merged.tree,
			edges=merged.edges,
			changed=merged.changed,
			results=results,
			selected=selection.selected,
		)

	async def _run_agent(
		self,
		snapshot: Snapshot,
		messages: list[Message],
		run: _AgentRun,
	) -> MutationResult:
		request = InvocationRequest(
			tree=snapshot.tree,
			edges=list(snapshot.edges),
			messages=messages,
			personality=run.personality,
			questions=run.questions,
		)
		reply = await self.invoker.invoke(request)
		return apply_operations(snapshot.tree, snapshot.edges, reply.items, agent_tag(run.personality.id))

	async def _default_pass(
		self,
		doc_id: str,
		snapshot: Snapshot,
		messages: list[Message],
		selection: Optional[Selection] = None,
		consumed: Optional[list[int]] = None,
	) -> TickResult:
		"""Single non-personality pass; invocation errors propagate."""
		request = InvocationRequest(tree=snapshot.tree, edges=list(snapshot.edges), messages=messages)
		try:
			reply = await self.invoker.invoke(request)
		except Exception as e:
			logger.error(f"Tick {doc_id}: default pass failed: {e}")
			raise

		outcome = apply_operations(snapshot.tree, snapshot.edges, reply.items, SHARED_AGENT_TAG)
		transcript = []
		if outcome.thinking:
			transcript.append(Message(doc_id=doc_id, role="assistant", content=outcome.thinking))

		await self.db.commit_tick(
			doc_id,
			tree=outcome.tree if outcome.changed else None,
			edges=outcome.edges if outcome.changed else None,
			messages=transcript,
			consumed_question_ids=consumed or [],
		)

		logger.info(f"Tick {doc_id}: default pass, changed={outcome.changed}")

		if outcome.changed:
			tree, edges = outcome.tree, outcome.edges
		else:
			tree, edges = snapshot.working_copy()

		return TickResult(
			thinking=outcome.thinking,
			tree=tree,
			edges=edges,
			changed=outcome.changed,
			selected=selection.selected if selection else [],
			default_pass=True,
		)

	async def chat(
		self,
		doc_id: str,
		message: str,
		hover_node_id: Optional[str] = None,
	) -> ChatResult:
		"""
		Answer a human message with the default voice, which may also edit the tree.

		The human message is stored before the voice is invoked and stays in
		the transcript if the invocation fails. Shares the document lock with
		ticks.

		Args:
			doc_id: Document to chat about
			message: The human's message
			hover_node_id: Node the human is looking at, if any

		Raises:
			DocumentNotFoundError: If the document does not exist
			InvocationError: If the voice cannot be invoked
			PersistenceError: If the outcome cannot be written
		"""
		async with self._lock_for(doc_id):
			doc = await self.db.get_document(doc_id)
			if doc is None:
				raise DocumentNotFoundError(doc_id)

			snapshot = Snapshot.take(doc.tree, doc.edges)
			messages = await self.db.get_messages(doc_id, self.history_limit)
			await self.db.add_message(doc_id, HUMAN_TAG, message, hover_node_id=hover_node_id)

			request = InvocationRequest(
				tree=snapshot.tree,
				edges=list(snapshot.edges),
				messages=messages,
				chat_message=message,
				hover_node_id=hover_node_id,
			)
			try:
				reply = await self.invoker.invoke(request)
			except Exception as e:
				logger.error(f"Chat {doc_id}: invocation failed: {e}")
				raise

			outcome = apply_operations(snapshot.tree, snapshot.edges, reply.items, SHARED_AGENT_TAG)
			text = outcome.thinking
			if text is None and outcome.tree.count() > snapshot.tree.count():
				text = TREE_ONLY_REPLY

			transcript = []
			if text:
				transcript.append(Message(doc_id=doc_id, role="assistant", content=text))

			await self.db.commit_tick(
				doc_id,
				tree=outcome.tree if outcome.changed else None,
				edges=outcome.edges if outcome.changed else None,
				messages=transcript,
			)

			logger.info(f"Chat {doc_id}: changed={outcome.changed}, hover={hover_node_id}")

			if outcome.changed:
				tree, edges = outcome.tree, outcome.edges
			else:
				tree, edges = snapshot.working_copy()
			return ChatResult(reply=text, tree=tree, edges=edges, changed=outcome.changed)


class HeartbeatRunner:
	"""
	Runs ticks for one document on a fixed interval until stopped.

	A failed tick is logged and the runner carries on with the next one.
	"""

	def __init__(
		self,
		heartbeat: Heartbeat,
		doc_id: str,
		interval: float = 30.0,
		on_tick: Optional[Callable[[TickResult], Awaitable[None]]] = None,
	):
		self.heartbeat = heartbeat
		self.doc_id = doc_id
		self.interval = interval
		self.on_tick = on_tick
		self._stop = asyncio.Event()

	def stop(self) -> None:
		self._stop.set()

	async def run(self, max_ticks: Optional[int] = None) -> int:
		"""
		Tick until stopped or `max_ticks` ticks have run.

		Returns:
			Number of ticks that completed successfully
		"""
		completed = 0
		attempted = 0
		while not self._stop.is_set():
			if max_ticks is not None and attempted >= max_ticks:
				break
			attempted += 1
			try:
				result = await self.heartbeat.run_tick(self.doc_id)
			except DocumentNotFoundError:
				raise
			except Exception as e:
				logger.error(f"Heartbeat tick for {self.doc_id} failed: {e}")
			else:
				completed += 1
				if self.on_tick:
					await self.on_tick(result)

			if max_ticks is not None and attempted >= max_ticks:
				break
			try:
				await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
			except asyncio.TimeoutError:
				pass
		return completed
