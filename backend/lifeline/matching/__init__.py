from .compatibility import BLOOD_TYPES, can_donate, compatible_donors
from .eligibility import candidate_filter, is_candidate
from .orchestrator import MatchOrchestrator, MatchResult
from .proximity import Candidate, ProximityLocator, SearchAnchor
from .responses import ResponseLedger

__all__ = [
    "BLOOD_TYPES",
    "Candidate",
    "MatchOrchestrator",
    "MatchResult",
    "ProximityLocator",
    "ResponseLedger",
    "SearchAnchor",
    "can_donate",
    "candidate_filter",
    "compatible_donors",
    "is_candidate",
]
