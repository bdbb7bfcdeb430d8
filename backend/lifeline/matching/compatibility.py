from __future__ import annotations

from typing import Dict, FrozenSet, Tuple


BLOOD_TYPES: Tuple[str, ...] = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")

# recipient type -> donor types it can receive from
_COMPATIBLE_DONORS: Dict[str, FrozenSet[str]] = {
    "A+": frozenset({"A+", "A-", "O+", "O-"}),
    "A-": frozenset({"A-", "O-"}),
    "B+": frozenset({"B+", "B-", "O+", "O-"}),
    "B-": frozenset({"B-", "O-"}),
    "AB+": frozenset(BLOOD_TYPES),
    "AB-": frozenset({"A-", "B-", "AB-", "O-"}),
    "O+": frozenset({"O+", "O-"}),
    "O-": frozenset({"O-"}),
}


def compatible_donors(requested_type: str) -> FrozenSet[str]:
    """Donor blood types that may give to a recipient of ``requested_type``."""
    return _COMPATIBLE_DONORS.get(requested_type, frozenset({requested_type}))


def can_donate(donor_type: str, recipient_type: str) -> bool:
    return donor_type in compatible_donors(recipient_type)


def compatible_recipients(donor_type: str) -> FrozenSet[str]:
    return frozenset(recipient for recipient, donors in _COMPATIBLE_DONORS.items() if donor_type in donors)
