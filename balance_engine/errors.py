"""
Ledger Error Taxonomy

Every failure the engine reports to its callers is one of these.
Cache failures are deliberately absent: they are logged and never raised.
"""


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """Bad amounts, split sums that don't match, self-settlement, etc."""
    pass


class NotMemberError(ValidationError):
    """A referenced user is not a member of the group."""

    def __init__(self, user_id, group_id, message: str = None):
        self.user_id = user_id
        self.group_id = group_id
        super().__init__(
            message or f"User {user_id} is not a member of group {group_id}"
        )


class NotFoundError(LedgerError):
    """Referenced expense, settlement or group does not exist."""
    pass


class AuthorizationError(LedgerError):
    """Requester lacks the rights to mutate the record."""
    pass


class StorageError(LedgerError):
    """Underlying store failure. Not retried here; callers may retry the whole operation."""
    pass
