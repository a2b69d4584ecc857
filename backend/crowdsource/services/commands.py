"""
Engine Commands

The closed set of intents the front end may issue. Each command is a
frozen dataclass; dispatch() routes it through one handler table, so the
engine surface stays fixed no matter how the caller picked the command.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..models.db_models import ProblemCategory
from ..models.domain import FreeTextLocation, LiveCoordinates
from .engine import CrowdsourceEngine
from .errors import ValidationError
from .idempotency.guard import location_content
from .problems.queries import problem_to_dict


@dataclass(frozen=True)
class ReportCommand:
    reporter_identity: str
    title: str
    description: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_text: Optional[str] = None
    category: ProblemCategory = ProblemCategory.OTHER

    def dedup_key(self) -> Tuple[str, str]:
        if self.latitude is not None and self.longitude is not None:
            return self.reporter_identity, f"{self.description} {location_content(self.latitude, self.longitude)}"
        return self.reporter_identity, self.description


@dataclass(frozen=True)
class UpvoteCommand:
    problem_id: int
    voter_identity: str

    def dedup_key(self) -> Tuple[str, str]:
        return self.voter_identity, f"upvote:{self.problem_id}"


@dataclass(frozen=True)
class VerifyCommand:
    problem_id: int
    verifier_identity: str
    latitude: float
    longitude: float
    image_urls: List[str] = field(default_factory=list)

    def dedup_key(self) -> Tuple[str, str]:
        return self.verifier_identity, f"verify:{self.problem_id}:{location_content(self.latitude, self.longitude)}"


@dataclass(frozen=True)
class OfferHelpCommand:
    problem_id: int
    volunteer_identity: str
    message: Optional[str] = None

    def dedup_key(self) -> Tuple[str, str]:
        return self.volunteer_identity, f"offer:{self.problem_id}"


@dataclass(frozen=True)
class SubmitProofCommand:
    problem_id: int
    volunteer_identity: str
    proof_ref: str
    notes: Optional[str] = None

    def dedup_key(self) -> Tuple[str, str]:
        return self.volunteer_identity, f"proof:{self.problem_id}:{self.proof_ref}"


Command = Union[ReportCommand, UpvoteCommand, VerifyCommand, OfferHelpCommand, SubmitProofCommand]


# =============================================================================
# DISPATCH
# =============================================================================

def _report(engine: CrowdsourceEngine, cmd: ReportCommand) -> Dict[str, Any]:
    live = None
    if cmd.latitude is not None and cmd.longitude is not None:
        live = LiveCoordinates(cmd.latitude, cmd.longitude)
    text = FreeTextLocation(cmd.location_text) if cmd.location_text else None
    problem = engine.report_problem(
        cmd.reporter_identity, cmd.title, cmd.description,
        live=live, text=text, category=cmd.category,
    )
    return problem_to_dict(problem)


def _upvote(engine: CrowdsourceEngine, cmd: UpvoteCommand) -> Dict[str, Any]:
    return engine.upvote(cmd.problem_id, cmd.voter_identity).to_dict()


def _verify(engine: CrowdsourceEngine, cmd: VerifyCommand) -> Dict[str, Any]:
    return engine.verify(cmd.problem_id, cmd.verifier_identity, cmd.latitude, cmd.longitude, cmd.image_urls).to_dict()


def _offer_help(engine: CrowdsourceEngine, cmd: OfferHelpCommand) -> Dict[str, Any]:
    return engine.offer_help(cmd.problem_id, cmd.volunteer_identity, cmd.message).to_dict()


def _submit_proof(engine: CrowdsourceEngine, cmd: SubmitProofCommand) -> Dict[str, Any]:
    return engine.submit_proof(cmd.problem_id, cmd.volunteer_identity, cmd.proof_ref, cmd.notes).to_dict()


HANDLERS: Dict[type, Callable[[CrowdsourceEngine, Any], Dict[str, Any]]] = {
    ReportCommand: _report,
    UpvoteCommand: _upvote,
    VerifyCommand: _verify,
    OfferHelpCommand: _offer_help,
    SubmitProofCommand: _submit_proof,
}

COMMAND_TYPES: Dict[str, type] = {
    "report": ReportCommand,
    "upvote": UpvoteCommand,
    "verify": VerifyCommand,
    "offer_help": OfferHelpCommand,
    "submit_proof": SubmitProofCommand,
}


def dispatch(engine: CrowdsourceEngine, command: Command) -> Dict[str, Any]:
    handler = HANDLERS.get(type(command))
    if handler is None:
        raise TypeError(f"Unsupported command: {type(command).__name__}")
    return handler(engine, command)


def command_from_payload(command_type: str, payload: Dict[str, Any]) -> Command:
    """Build a command from a tagged JSON payload; unknown tags and fields are rejected."""
    cls = COMMAND_TYPES.get(command_type)
    if cls is None:
        raise ValidationError(
            f"Unknown command type '{command_type}'. Expected one of: {', '.join(COMMAND_TYPES)}"
        )
    data = dict(payload or {})
    if cls is ReportCommand and data.get("category") is None:
        data.pop("category", None)
    elif cls is ReportCommand:
        try:
            data["category"] = ProblemCategory(data["category"])
        except ValueError:
            raise ValidationError(f"Unknown category '{data['category']}'")
    try:
        return cls(**data)
    except TypeError as e:
        raise ValidationError(f"Invalid {command_type} payload: {e}")
