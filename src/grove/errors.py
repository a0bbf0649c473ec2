"""Exception types raised past the heartbeat engine's boundary."""


class GroveError(Exception):
	"""Base class for grove errors."""
	pass


class DocumentNotFoundError(GroveError):
	"""Raised when a tick or edit targets a document that does not exist."""

	def __init__(self, doc_id: str):
		super().__init__(f"Document not found: {doc_id}")
		self.doc_id = doc_id


class InvocationError(GroveError):
	"""Raised when a single agent invocation fails."""
	pass


class PersistenceError(GroveError):
	"""Raised when the merged result of a tick cannot be written."""
	pass
