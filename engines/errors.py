"""Error taxonomy shared by the engines and mapped to HTTP in ``app.py``."""


class FinQuestError(Exception):
    """Base class for domain errors."""


class NotFoundError(FinQuestError, LookupError):
    """A session, question, topic, user or badge does not exist."""


class InvalidRequestError(FinQuestError, ValueError):
    """The request payload is well-formed JSON but semantically invalid."""


class UpstreamError(FinQuestError, RuntimeError):
    """The store or the content generator failed on a critical call."""
