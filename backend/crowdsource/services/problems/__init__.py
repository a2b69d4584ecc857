from .registry import ProblemRegistry, STATE_CONFIG, can_transition, is_terminal
from .timeline import TimelineService
from .consensus import ConsensusEngine, classify_spread
from .resolution import VolunteerResolutionWorkflow
from .queries import ProblemQueryService, problem_to_dict
from .severity import calculate_severity, problem_severity, severity_level

__all__ = [
    "ProblemRegistry",
    "STATE_CONFIG",
    "can_transition",
    "is_terminal",
    "TimelineService",
    "ConsensusEngine",
    "classify_spread",
    "VolunteerResolutionWorkflow",
    "ProblemQueryService",
    "problem_to_dict",
    "calculate_severity",
    "problem_severity",
    "severity_level",
]
