"""
Fan-out - concurrent dispatch of the agents selected for a tick.

Every run is started at once against the same frozen snapshot and the
caller waits for all of them (a full barrier, not first-result). A run
that raises is captured as a failed result for that agent; it neither
cancels its siblings nor aborts the tick.

Results come back in dispatch order, not completion order, so the
reconciler merges deterministically.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class FanOutStatus(str, Enum):
	"""Overall outcome of a fan-out."""
	COMPLETED = "completed"
	PARTIAL_FAILURE = "partial_failure"
	FAILED = "failed"


@dataclass
class FanOutItem(Generic[T]):
	"""One unit of work, keyed by the agent it belongs to."""
	id: str
	data: T


@dataclass
class FanOutResult(Generic[R]):
	"""Result of one run."""
	item_id: str
	success: bool
	result: Optional[R] = None
	error: Optional[str] = None


@dataclass
class FanOutSummary(Generic[R]):
	status: FanOutStatus
	results: list[FanOutResult[R]] = field(default_factory=list)

	@property
	def total(self) -> int:
		return len(self.results)

	@property
	def succeeded(self) -> int:
		return sum(1 for r in self.results if r.success)

	@property
	def failed(self) -> int:
		return self.total - self.succeeded


class FanOut(Generic[T, R]):
	"""
	Runs a handler over every item concurrently.

	A `max_concurrency` of 0 runs everything at once; a positive value caps
	the number of in-flight runs with a semaphore.
	"""

	def __init__(self, max_concurrency: int = 0):
		self.max_concurrency = max_concurrency

	async def execute(
		self,
		items: list[FanOutItem[T]],
		handler: Callable[[FanOutItem[T]], Awaitable[R]],
	) -> FanOutSummary[R]:
		"""
		Run `handler` for each item and wait for all of them.

		Args:
			items: Work items, in the order results should be reported
			handler: Async function to run for each item

		Returns:
			FanOutSummary with one result per item, in item order
		"""
		if not items:
			return FanOutSummary(status=FanOutStatus.COMPLETED)

		semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency > 0 else None

		async def run(item: FanOutItem[T]) -> FanOutResult[R]:
			try:
				if semaphore is None:
					value = await handler(item)
				else:
					async with semaphore:
						value = await handler(item)
			except Exception as e:
				logger.warning(f"Run for {item.id} failed: {e}")
				return FanOutResult(item_id=item.id, success=False, error=str(e) or type(e).__name__)
			return FanOutResult(item_id=item.id, success=True, result=value)

		results = list(await asyncio.gather(*(run(item) for item in items)))

		succeeded = sum(1 for r in results if r.success)
		if succeeded == len(results):
			status = FanOutStatus.COMPLETED
		elif succeeded == 0:
			status = FanOutStatus.FAILED
		else:
			status = FanOutStatus.PARTIAL_FAILURE

		return FanOutSummary(status=status, results=results)
