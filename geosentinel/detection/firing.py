"""
Firing state machine.

The next alert state depends only on the alert mode, whether the monitor
was firing on its previous run and whether the evaluation found matches.
All history lives in the persisted ``last_run.alert``.

    alert_on | data empty | was firing | next
    ---------+------------+------------+----------------
    data     | no         | no         | firing
    data     | no         | yes        | stillFiring
    data     | yes        | no         | notFiring
    data     | yes        | yes        | noLongerFiring
    noData   | yes        | no         | firing
    noData   | yes        | yes        | stillFiring
    noData   | no         | no         | notFiring
    noData   | no         | yes        | noLongerFiring
"""

from typing import Optional

from geosentinel.models.monitor import AlertOn, AlertState


def was_firing(previous: Optional[AlertState]) -> bool:
    """An absent previous state counts as not firing."""
    return previous is not None and AlertState(previous).is_firing


def next_alert(alert_on: AlertOn, was_firing: bool, is_data_empty: bool) -> AlertState:
    """
    Compute the next alert state.

    Args:
        alert_on: Whether matches (data) or their absence (noData) is the condition.
        was_firing: Whether the previous state was firing or stillFiring.
        is_data_empty: Whether the evaluation produced no matches.

    Returns:
        AlertState: The new state.
    """
    condition_met = (not is_data_empty) if alert_on == AlertOn.DATA else is_data_empty

    if condition_met:
        return AlertState.STILL_FIRING if was_firing else AlertState.FIRING
    return AlertState.NO_LONGER_FIRING if was_firing else AlertState.NOT_FIRING
