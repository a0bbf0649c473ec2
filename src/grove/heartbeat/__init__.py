"""Heartbeat module - Agent selection, fan-out, question ledger, and tick orchestration."""

from .fanout import FanOut, FanOutItem, FanOutResult, FanOutStatus, FanOutSummary
from .ledger import QuestionLedger
from .selection import Selection, roll_dice, select_agents
from .tick import AgentResult, ChatResult, Heartbeat, HeartbeatRunner, TickResult

__all__ = [
	"FanOut",
	"FanOutItem",
	"FanOutResult",
	"FanOutStatus",
	"FanOutSummary",
	"QuestionLedger",
	"Selection",
	"roll_dice",
	"select_agents",
	"AgentResult",
	"ChatResult",
	"Heartbeat",
	"HeartbeatRunner",
	"TickResult",
]
