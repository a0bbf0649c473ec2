"""Grove - shared thought trees grown concurrently by multiple agent voices."""

from .errors import DocumentNotFoundError, GroveError, InvocationError, PersistenceError
from .heartbeat import ChatResult, Heartbeat, HeartbeatRunner, TickResult
from .storage import Database
from .tree import Edge, Heat, Snapshot, TreeNode

__all__ = [
	"ChatResult",
	"Database",
	"DocumentNotFoundError",
	"Edge",
	"GroveError",
	"Heartbeat",
	"HeartbeatRunner",
	"Heat",
	"InvocationError",
	"PersistenceError",
	"Snapshot",
	"TickResult",
	"TreeNode",
]
