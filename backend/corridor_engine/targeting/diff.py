"""
Target Set Diffing

Turns two consecutive TargetSets of one corridor into alert messages:
- only in the new set -> ALERT
- only in the old set -> CLEARANCE (vehicle has been passed)
- in both -> UPDATE, only when guidance changed or the ETA moved by more
  than the tolerance
"""

from typing import List, Optional

from corridor_engine.models import AlertKind, AlertMessage, TargetSet


def diff_target_sets(
    old: Optional[TargetSet],
    new: TargetSet,
    eta_tolerance_seconds: float = 5.0
) -> List[AlertMessage]:
    """
    Diff two target sets

    Args:
        old: Previous target set (None for the first one)
        new: Newly computed target set
        eta_tolerance_seconds: ETA change below which no UPDATE is sent

    Returns:
        Messages ordered ALERT, UPDATE, CLEARANCE; by vehicle id within each kind
    """
    old_entries = old.entries if old is not None else {}
    new_entries = new.entries
    corridor_id = new.corridor_id

    alerts = []
    updates = []
    for vehicle_id in sorted(new_entries):
        record = new_entries[vehicle_id]
        previous = old_entries.get(vehicle_id)
        if previous is None:
            alerts.append(AlertMessage(
                corridor_id=corridor_id,
                civilian_vehicle_id=vehicle_id,
                kind=AlertKind.ALERT,
                guidance=record.direction,
                eta_seconds=record.eta_seconds,
            ))
        elif (
            previous.direction != record.direction
            or abs(previous.eta_seconds - record.eta_seconds) > eta_tolerance_seconds
        ):
            updates.append(AlertMessage(
                corridor_id=corridor_id,
                civilian_vehicle_id=vehicle_id,
                kind=AlertKind.UPDATE,
                guidance=record.direction,
                eta_seconds=record.eta_seconds,
            ))

    clearances = [
        AlertMessage(
            corridor_id=corridor_id,
            civilian_vehicle_id=vehicle_id,
            kind=AlertKind.CLEARANCE,
            guidance=old_entries[vehicle_id].direction,
            eta_seconds=0.0,
        )
        for vehicle_id in sorted(set(old_entries) - set(new_entries))
    ]

    return alerts + updates + clearances


def clearances_for(target_set: Optional[TargetSet]) -> List[AlertMessage]:
    """CLEARANCE for every vehicle still targeted (corridor completed)"""
    if target_set is None:
        return []
    return diff_target_sets(
        target_set,
        TargetSet(corridor_id=target_set.corridor_id, computed_at=target_set.computed_at),
    )
