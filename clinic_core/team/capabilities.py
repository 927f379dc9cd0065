# clinic_core/team/capabilities.py
"""
Capability model for clinical staff.

`capability_of` and `check_capability` are pure: they read only the member
object they are given and never touch the database or raise. Services that
need to *enforce* a capability call `require_capability`, which turns a
denied check into an AuthorizationError naming the missing capability.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional

from clinic_core.common.errors import AuthorizationError
from clinic_core.team.models import JobTitle

DOCTOR = "doctor"
ASSISTANT = "assistant"
FRONT_DESK = "front_desk"

# Pseudo-capability: any active member of the facility
MEMBER = "member"

KNOWN_CAPABILITIES = frozenset({DOCTOR, ASSISTANT, FRONT_DESK})

JOB_TITLE_CAPABILITIES: dict[str, FrozenSet[str]] = {
    JobTitle.MEDECIN: frozenset({DOCTOR}),
    JobTitle.INFIRMIER: frozenset({ASSISTANT}),
    JobTitle.AIDE_SOIGNANT: frozenset({ASSISTANT}),
    JobTitle.SAGE_FEMME: frozenset({ASSISTANT}),
    JobTitle.ASSISTANT_MEDICAL: frozenset({ASSISTANT, FRONT_DESK}),
    JobTitle.SECRETAIRE: frozenset({FRONT_DESK}),
}


@dataclass(frozen=True)
class CapabilityCheck:
    allowed: bool
    required: str
    held: FrozenSet[str]
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def capability_of(member) -> FrozenSet[str]:
    if member is None or not getattr(member, "is_active", False):
        return frozenset()

    caps = set(JOB_TITLE_CAPABILITIES.get(member.job_title, frozenset()))
    for extra in member.extra_capabilities or []:
        if extra in KNOWN_CAPABILITIES:
            caps.add(extra)
    return frozenset(caps)


def check_capability(member, required: str) -> CapabilityCheck:
    held = capability_of(member)

    if member is None:
        return CapabilityCheck(False, required, held, "No team member for this actor.")
    if not member.is_active:
        return CapabilityCheck(False, required, held, "Team member is inactive.")
    if required == MEMBER or required in held:
        return CapabilityCheck(True, required, held)

    return CapabilityCheck(False, required, held, f"Team member lacks the '{required}' capability.")


def require_capability(member, required: str, *, action: Optional[str] = None) -> None:
    check = check_capability(member, required)
    if not check.allowed:
        raise AuthorizationError(
            check.reason,
            capability=required,
            held=sorted(check.held),
            action=action,
        )
