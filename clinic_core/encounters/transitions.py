# clinic_core/encounters/transitions.py
"""
Encounter lifecycle graph and transition table.

Each mode has its own path through the lifecycle:

    solo:      created -> consultation_in_progress -> completed
    assisted:  created -> preconsult_in_progress -> preconsult_ready
                       -> consultation_in_progress -> completed

and every non-terminal status may move to cancelled. There are no self-edges
and nothing leaves completed/cancelled.

TRANSITIONS maps (from, to) -> TransitionRule: which timestamp to stamp,
which capability the actor needs, and which side effects run after commit.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional

from clinic_core.encounters.constants import TERMINAL_STATUSES, EncounterMode, EncounterStatus as S
from clinic_core.team.capabilities import ASSISTANT, DOCTOR, MEMBER

# Side effect descriptors (executed by EncounterService after commit)
NOTIFY = "notify"
QUEUE_IN_CONSULTATION = "queue.in_consultation"
QUEUE_COMPLETED = "queue.completed"

MODE_EDGES: dict[str, dict[str, tuple[str, ...]]] = {
    EncounterMode.SOLO: {
        S.CREATED: (S.CONSULTATION_IN_PROGRESS,),
        S.CONSULTATION_IN_PROGRESS: (S.COMPLETED,),
    },
    EncounterMode.ASSISTED: {
        S.CREATED: (S.PRECONSULT_IN_PROGRESS,),
        S.PRECONSULT_IN_PROGRESS: (S.PRECONSULT_READY,),
        S.PRECONSULT_READY: (S.CONSULTATION_IN_PROGRESS,),
        S.CONSULTATION_IN_PROGRESS: (S.COMPLETED,),
    },
}

INITIAL_STATUS = {
    EncounterMode.SOLO: S.CONSULTATION_IN_PROGRESS,
    EncounterMode.ASSISTED: S.PRECONSULT_IN_PROGRESS,
}

STAMP_FIELDS = {
    S.PRECONSULT_READY: "preconsult_completed_at",
    S.CONSULTATION_IN_PROGRESS: "consultation_started_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED: "completed_at",
}

REQUIRED_CAPABILITY = {
    S.PRECONSULT_IN_PROGRESS: ASSISTANT,
    S.PRECONSULT_READY: ASSISTANT,
    S.CONSULTATION_IN_PROGRESS: DOCTOR,
    S.COMPLETED: DOCTOR,
    S.CANCELLED: MEMBER,
}

TARGET_SIDE_EFFECTS = {
    S.CONSULTATION_IN_PROGRESS: (NOTIFY, QUEUE_IN_CONSULTATION),
    S.COMPLETED: (NOTIFY, QUEUE_COMPLETED),
}


@dataclass(frozen=True)
class TransitionRule:
    from_status: str
    to_status: str
    stamp_field: Optional[str]
    capability: str
    side_effects: tuple[str, ...]


def _rule(from_status: str, to_status: str) -> TransitionRule:
    return TransitionRule(
        from_status=from_status,
        to_status=to_status,
        stamp_field=STAMP_FIELDS.get(to_status),
        capability=REQUIRED_CAPABILITY[to_status],
        side_effects=TARGET_SIDE_EFFECTS.get(to_status, (NOTIFY,)),
    )


def _build_table() -> dict[tuple[str, str], TransitionRule]:
    table: dict[tuple[str, str], TransitionRule] = {}
    for edges in MODE_EDGES.values():
        for from_status, targets in edges.items():
            for to_status in targets:
                table[(from_status, to_status)] = _rule(from_status, to_status)
    for status in S.values:
        if status not in TERMINAL_STATUSES:
            table[(status, S.CANCELLED)] = _rule(status, S.CANCELLED)
    return table


TRANSITIONS = _build_table()


def graph_nodes(mode: str) -> FrozenSet[str]:
    nodes = set(TERMINAL_STATUSES)
    for from_status, targets in MODE_EDGES[mode].items():
        nodes.add(from_status)
        nodes.update(targets)
    return frozenset(nodes)


def allowed_targets(mode: str, status: str) -> tuple[str, ...]:
    """
    Statuses reachable in one step. A status that is not part of the current
    mode's path (left behind by a mode switch) keeps the edges of the path it
    came from, so the encounter can still progress or be cancelled.
    """
    if status in TERMINAL_STATUSES:
        return ()

    edges = MODE_EDGES.get(mode, {})
    if status not in graph_nodes(mode):
        for other_mode, other_edges in MODE_EDGES.items():
            if other_mode != mode and status in other_edges:
                edges = other_edges
                break

    return tuple(edges.get(status, ())) + (S.CANCELLED,)


def rule_for(mode: str, from_status: str, to_status: str) -> Optional[TransitionRule]:
    if to_status not in allowed_targets(mode, from_status):
        return None
    return TRANSITIONS[(from_status, to_status)]
