"""Application-specific exceptions."""


class NotFoundError(LookupError):
    """Raised when a requested entity does not exist."""


class UserNotFoundError(NotFoundError):
    """Raised when a user cannot be found."""


class GroupNotFoundError(NotFoundError):
    """Raised when a group cannot be found."""


class MembershipNotFoundError(NotFoundError):
    """Raised when a user has no membership in the group."""


class NoContentError(LookupError):
    """Raised when a query has nothing to return."""


class ActiveMemberNotInGroupError(RuntimeError):
    """Raised when a rotation has no member to select."""


class OutboxSerializationError(ValueError):
    """Raised when an event payload cannot be serialized for the outbox."""


class PublishError(RuntimeError):
    """Raised when the message bus rejects or times out a publish."""
