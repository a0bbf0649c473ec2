"""
Question-passing ledger.

Agents can raise a question for another agent during a tick. The question
is stored, the addressed agent is guaranteed a slot on the next tick, and
once that agent has been given a slot the question is consumed, whether
or not the agent used it.
"""

from typing import Iterable

from ..storage.database import Database
from ..tree.models import PendingQuestion


class QuestionLedger:
	"""Pending questions for one document."""

	def __init__(self, db: Database, doc_id: str):
		self.db = db
		self.doc_id = doc_id

	async def reserved_agents(self) -> list[str]:
		"""Agents owed a slot because a question is waiting for them."""
		return await self.db.get_reserved_agents(self.doc_id)

	async def pending_for(self, agent_ids: Iterable[str]) -> dict[str, list[PendingQuestion]]:
		"""Pending questions keyed by addressed agent. Agents with none are omitted."""
		pending: dict[str, list[PendingQuestion]] = {}
		for agent_id in agent_ids:
			questions = await self.db.get_pending_questions_for(self.doc_id, agent_id)
			if questions:
				pending[agent_id] = questions
		return pending

	@staticmethod
	def consumed_ids(pending: dict[str, list[PendingQuestion]]) -> list[int]:
		"""Ids of every question delivered to a selected agent this tick."""
		return [q.id for questions in pending.values() for q in questions if q.id is not None]

	def outgoing(self, from_agent: str, raised: Iterable[tuple[str, str]]) -> list[PendingQuestion]:
		"""Turn (to_agent, question) pairs raised this tick into ledger rows for the next tick."""
		return [
			PendingQuestion(doc_id=self.doc_id, from_agent=from_agent, to_agent=to_agent, question=question)
			for to_agent, question in raised
			if to_agent and question
		]
