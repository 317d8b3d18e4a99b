from __future__ import annotations

from datetime import datetime


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainInvariantError(DomainError):
    pass


class DomainDependencyError(DomainError):
    pass


class MessageNotFoundError(DomainError):
    def __init__(self, message_id: int) -> None:
        super().__init__(f"message {message_id} is not found")
        self.message_id = message_id


class CancellationNotFoundError(DomainError):
    pass


class DuplicateMessageError(DomainValidationError):
    """Same sender, same group and same content inside the spam window."""

    def __init__(self, *, existing_message_id: int, existing_message_date: datetime, window_minutes: int) -> None:
        super().__init__(
            "This sender has already posted the same message in this group "
            f"within the past {window_minutes} minutes"
        )
        self.existing_message_id = existing_message_id
        self.existing_message_date = existing_message_date
        self.window_minutes = window_minutes


class StaleClaimError(DomainInvariantError):
    """Outcome reported for a message that is no longer held by the caller."""

    def __init__(self, *, message_id: int, current_status: str) -> None:
        super().__init__(f"message {message_id} is not processing (current status: {current_status})")
        self.message_id = message_id
        self.current_status = current_status


class CascadePartialError(DomainError):
    def __init__(self, *, messages_matched: int, messages_modified: int, cause: Exception) -> None:
        super().__init__(
            "cancellation cascade partially applied: "
            f"messages matched={messages_matched} modified={messages_modified}, listings not updated"
        )
        self.messages_matched = messages_matched
        self.messages_modified = messages_modified
        self.cause = cause
