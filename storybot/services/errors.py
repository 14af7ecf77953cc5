"""Errors raised by the story engine services.

Handlers translate these into recoverable chat messages; ``to_dict`` gives
the payload a client would receive.
"""
from __future__ import annotations

from typing import Any, Dict, List


class StoryEngineError(Exception):
    code = "story_engine_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class NotFound(StoryEngineError):
    code = "not_found"


class StoryNotFound(NotFound):
    code = "story_not_found"

    def __init__(self, story_id: str):
        super().__init__(f"Story {story_id} not found")
        self.story_id = story_id


class PageNotFound(NotFound):
    code = "page_not_found"

    def __init__(self, story_id: str | None, position):
        where = f" in story {story_id}" if story_id else ""
        super().__init__(f"Page {position!r} not found{where}")
        self.story_id = story_id
        self.position = position


class ChoiceNotFound(NotFound):
    code = "choice_not_found"

    def __init__(self, choice_id: str, reason: str = "not found"):
        super().__init__(f"Choice {choice_id} {reason}")
        self.choice_id = choice_id


class InvariantViolation(StoryEngineError):
    """The story graph is malformed. This is a data bug, never user input."""

    code = "invariant_violation"

    def __init__(self, message: str, problems: List[str] | None = None):
        super().__init__(message)
        self.problems = problems or []

    def to_dict(self) -> Dict[str, Any]:
        # Problems are logged server-side; clients get a generic failure
        return {"error": self.code, "message": "This story is temporarily unavailable."}


class AuthenticationRequired(StoryEngineError):
    code = "authentication_required"

    def __init__(self, action: str = "unlock premium choices", choice_id: str | None = None):
        super().__init__(f"Sign in to {action}")
        self.choice_id = choice_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.choice_id:
            data["choiceId"] = self.choice_id
        return data


class InsufficientBalance(StoryEngineError):
    code = "insufficient_balance"

    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient balance: {required} required, {available} available")
        self.required = required
        self.available = available

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(required=self.required, available=self.available)
        return data


class ConcurrentPurchaseConflict(StoryEngineError):
    """Another transaction recorded the same purchase first.

    Only raised inside the ledger; the choice resolution service always
    turns it into an "already owned" success.
    """

    code = "concurrent_purchase_conflict"

    def __init__(self, user_id: int, choice_id: str):
        super().__init__(f"Purchase of {choice_id} by user {user_id} already recorded")
        self.user_id = user_id
        self.choice_id = choice_id
