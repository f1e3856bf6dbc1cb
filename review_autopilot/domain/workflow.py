"""
Review Workflow State Machine
=============================

    PENDING ──> AUTO_REPLIED ──> CLOSED
       │
       └──> MANUAL_PENDING ──> ESCALATED ──> COMPLETED
                   │                              ^
                   └──────────────────────────────┘

States only move forward along these edges. CLOSED, ESCALATED and
COMPLETED stop reminder scheduling; ESCALATED reviews can still be
completed by a manual reply outside the automation loop.
"""

from typing import Dict, FrozenSet

from .models import ReviewStatus


class WorkflowError(Exception):
    """Base exception for workflow errors."""
    pass


class InvalidTransitionError(WorkflowError):
    """Raised when a state change is not an edge of the workflow graph."""

    def __init__(self, review_id: str, current: ReviewStatus, target: ReviewStatus):
        self.review_id = review_id
        self.current = current
        self.target = target
        super().__init__(
            f"Review {review_id}: cannot move from {current.value} to {target.value}"
        )


class WorkflowNotFoundError(WorkflowError):
    """Raised when a review has no workflow row."""
    pass


TRANSITIONS: Dict[ReviewStatus, FrozenSet[ReviewStatus]] = {
    ReviewStatus.PENDING: frozenset({ReviewStatus.AUTO_REPLIED, ReviewStatus.MANUAL_PENDING}),
    ReviewStatus.AUTO_REPLIED: frozenset({ReviewStatus.CLOSED}),
    ReviewStatus.MANUAL_PENDING: frozenset({ReviewStatus.ESCALATED, ReviewStatus.COMPLETED}),
    ReviewStatus.ESCALATED: frozenset({ReviewStatus.COMPLETED}),
    ReviewStatus.CLOSED: frozenset(),
    ReviewStatus.COMPLETED: frozenset(),
}

# No reminders are ever sent for reviews in these states
REMINDER_TERMINAL_STATES: FrozenSet[ReviewStatus] = frozenset(
    {ReviewStatus.CLOSED, ReviewStatus.ESCALATED, ReviewStatus.COMPLETED}
)


def can_transition(current: ReviewStatus, target: ReviewStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(review_id: str, current: ReviewStatus, target: ReviewStatus) -> None:
    """Raise InvalidTransitionError unless current -> target is an edge."""
    if not can_transition(current, target):
        raise InvalidTransitionError(review_id, current, target)


def is_reminder_terminal(state: ReviewStatus) -> bool:
    return state in REMINDER_TERMINAL_STATES
