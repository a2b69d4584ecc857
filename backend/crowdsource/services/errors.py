"""
Engine error taxonomy.

Conflict-as-no-op outcomes (duplicate upvote, verification, offer) are NOT
errors; they come back as normal results with accepted=False.
"""


class CrowdsourceError(Exception):
    """Base class for all engine errors."""
    pass


class ValidationError(CrowdsourceError):
    """Malformed or missing identity, coordinates or required text. Never persisted."""
    pass


class ProblemNotFoundError(CrowdsourceError):
    """Unknown problem id."""

    def __init__(self, problem_id):
        self.problem_id = problem_id
        super().__init__(f"Problem #{problem_id} not found")


class InvalidTransitionError(CrowdsourceError):
    """Raised when a state transition is not allowed."""

    def __init__(self, from_state, to_state):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Cannot transition from {from_state.value} to {to_state.value}")


class PreconditionError(CrowdsourceError):
    """User-actionable precondition failure, not a system fault."""
    pass


class NoHelpOfferError(PreconditionError):
    def __init__(self, problem_id, volunteer_identity):
        self.problem_id = problem_id
        self.volunteer_identity = volunteer_identity
        super().__init__(
            f"You haven't offered to help with problem #{problem_id}. Offer help first."
        )


class AlreadyResolvedError(PreconditionError):
    def __init__(self, problem_id, resolved_by=None):
        self.problem_id = problem_id
        self.resolved_by = resolved_by
        suffix = f" by {resolved_by}" if resolved_by else ""
        super().__init__(f"Problem #{problem_id} has already been resolved{suffix}")


class NotOwnerError(PreconditionError):
    def __init__(self, problem_id):
        self.problem_id = problem_id
        super().__init__("You can only update your own problem reports.")


class ExternalServiceError(CrowdsourceError):
    """A collaborator (image storage, geocoder, messaging) failed."""
    pass
