"""Condition ledger.

One entry per condition type. Status, message and transition time change
only when the status flips, so repeated passes with the same outcome leave
the list untouched.
"""

from __future__ import annotations

from dataset_operator.models import Condition
from dataset_operator.utils.datetime import utcnow

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"


def set_condition(
    conditions: list[Condition],
    type_: str | None,
    error: BaseException | None,
) -> list[Condition]:
    """Record the outcome of a step under ``type_``.

    Args:
        conditions: Current conditions, updated in place
        type_: Condition type; empty means the step is not tracked
        error: None on success, otherwise the failure

    Returns:
        The same list, for chaining
    """
    if not type_:
        return conditions

    condition = next((c for c in conditions if c.type == type_), None)
    if condition is None:
        condition = Condition(type=type_, status="", reason=f"{type_}Ready")
        conditions.append(condition)

    if error is None:
        if condition.status != CONDITION_TRUE:
            condition.status = CONDITION_TRUE
            condition.last_transition_time = utcnow()
            condition.message = ""
    elif condition.status != CONDITION_FALSE:
        condition.status = CONDITION_FALSE
        condition.last_transition_time = utcnow()
        condition.message = str(error)

    return conditions


def any_false(conditions: list[Condition]) -> bool:
    return any(c.status == CONDITION_FALSE for c in conditions)
