"""
Static transition table for the hiring pipeline.

The table maps every ``PipelineState`` to the ordered tuple of its legal
successors. It encodes three topologies:

- linear stages (``JD_RECEIVED -> JD_PROCESSED -> SOURCING -> ...``)
- bounded retry self-loops (``NOT_REACHED -> CALLING``,
  ``INTERVIEW_ROUNDS -> INTERVIEW_ROUNDS``)
- feedback loops back to an earlier stage (``CV_REJECTED -> SOURCING``)

Every negative outcome converges on ``CLOSED_DROPPED``; every success path
converges on ``CLOSED_PLACED`` via ``INVOICE_RAISED`` or ``PAYMENT_FOLLOWUP``.

The table is exposed through a read-only ``MappingProxyType`` and validated
once at import time, so configuration drift fails fast instead of surfacing
as a stuck record.
"""

from collections import deque
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple

from models.status import INITIAL_STATE, TERMINAL_STATES, PipelineState

S = PipelineState

_TRANSITIONS: Dict[PipelineState, Tuple[PipelineState, ...]] = {
    S.JD_RECEIVED: (S.JD_PROCESSED,),
    S.JD_PROCESSED: (S.SOURCING,),
    S.SOURCING: (S.RESUME_MATCHED,),
    S.RESUME_MATCHED: (S.CALLING,),
    S.CALLING: (S.CONSENTED, S.NOT_INTERESTED, S.NOT_REACHED),
    S.NOT_REACHED: (S.CALLING,),  # retry loop
    S.CONSENTED: (S.JD_SHARED,),
    S.NOT_INTERESTED: (S.CLOSED_DROPPED,),
    S.JD_SHARED: (S.CANDIDATE_CONFIRMED, S.CANDIDATE_NOT_INTERESTED),
    S.CANDIDATE_NOT_INTERESTED: (S.CLOSED_DROPPED,),
    S.CANDIDATE_CONFIRMED: (S.CV_REFINED,),
    S.CV_REFINED: (S.CV_SUBMITTED,),
    S.CV_SUBMITTED: (S.CV_SHORTLISTED, S.CV_REJECTED),
    S.CV_REJECTED: (S.SOURCING,),  # feedback -> re-source
    S.CV_SHORTLISTED: (S.INTERVIEW_SCHEDULED,),
    S.INTERVIEW_SCHEDULED: (S.INTERVIEW_ROUNDS,),
    S.INTERVIEW_ROUNDS: (S.SELECTED, S.REJECTED, S.INTERVIEW_ROUNDS),  # multi-round loop
    S.REJECTED: (S.CLOSED_DROPPED,),
    S.SELECTED: (S.DOCUMENTATION,),
    S.DOCUMENTATION: (S.OFFER_STAGE,),
    S.OFFER_STAGE: (S.NEGOTIATION_POSITIVE, S.NEGOTIATION_NEGATIVE),
    S.NEGOTIATION_NEGATIVE: (S.CLOSED_DROPPED,),
    S.NEGOTIATION_POSITIVE: (S.OFFER_ACCEPTED, S.NOT_POSITIVE),
    S.NOT_POSITIVE: (S.CLOSED_DROPPED,),
    S.OFFER_ACCEPTED: (S.DOJ_CONFIRMED,),
    S.DOJ_CONFIRMED: (S.INVOICE_RAISED,),
    S.INVOICE_RAISED: (S.PAYMENT_FOLLOWUP, S.CLOSED_PLACED),
    S.PAYMENT_FOLLOWUP: (S.CLOSED_PLACED,),
    S.CLOSED_PLACED: (),
    S.CLOSED_DROPPED: (),
}


class TransitionTableError(ValueError):
    """Raised when the transition table fails its startup validation."""


def validate_transition_table(
    table: Mapping[PipelineState, Tuple[PipelineState, ...]],
) -> None:
    """
    Validate a transition table for totality and internal consistency.

    Checks performed:
    1. Every PipelineState is a key
    2. Every successor is itself a key
    3. Successor tuples contain no duplicates
    4. Terminal states have no successors; every other state has at least one
    5. Every state is reachable from the initial state

    Args:
        table: Mapping of state to ordered successor tuple

    Raises:
        TransitionTableError: Describing the first group of problems found
    """
    problems: List[str] = []

    missing = [state.value for state in PipelineState if state not in table]
    if missing:
        problems.append(f"states without an entry: {', '.join(missing)}")

    for state, successors in table.items():
        unknown = [str(s) for s in successors if s not in table]
        if unknown:
            problems.append(f"{state.value} has unknown successors: {', '.join(unknown)}")
        if len(set(successors)) != len(successors):
            problems.append(f"{state.value} lists a successor more than once")
        if state in TERMINAL_STATES and successors:
            problems.append(f"terminal state {state.value} must not have successors")
        if state not in TERMINAL_STATES and not successors:
            problems.append(f"non-terminal state {state.value} has no successors")

    if problems:
        raise TransitionTableError("Invalid transition table: " + "; ".join(problems))

    # Reachability from the initial state (BFS)
    seen = {INITIAL_STATE}
    queue = deque([INITIAL_STATE])
    while queue:
        for successor in table[queue.popleft()]:
            if successor not in seen:
                seen.add(successor)
                queue.append(successor)

    unreachable = [state.value for state in PipelineState if state not in seen]
    if unreachable:
        raise TransitionTableError(
            "Invalid transition table: unreachable states: " + ", ".join(unreachable)
        )


validate_transition_table(_TRANSITIONS)

TRANSITION_TABLE: Mapping[PipelineState, Tuple[PipelineState, ...]] = MappingProxyType(
    _TRANSITIONS
)
