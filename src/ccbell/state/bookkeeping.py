"""Cooldown and throttle bookkeeping: reserve on proceed, commit or roll back later.

All functions edit a Snapshot in place and are meant to run inside
``StateStore.compare_and_swap``.
"""

from ccbell.state.snapshot import Reservation, Snapshot


def reserve(snapshot: Snapshot, event: str, token: str, now: float, window: float) -> None:
    """Take a throttle slot and tentatively start the event's cooldown.

    Doing both under the decision lock stops a concurrent invocation of the
    same event from slipping through before this one has played.
    """
    snapshot.prune_throttle(now, window)
    snapshot.throttle.append(Reservation(
        token=token,
        event=event,
        timestamp=now,
        previous_cooldown=snapshot.cooldowns.get(event),
    ))
    snapshot.cooldowns[event] = now


def commit(snapshot: Snapshot, event: str, token: str, now: float) -> None:
    """Playback was attempted: the reservation counts for good."""
    reservation = snapshot.find_reservation(token)
    if reservation is not None:
        reservation.committed = True
    snapshot.cooldowns[event] = max(now, snapshot.cooldowns.get(event, now))


def rollback(snapshot: Snapshot, token: str) -> None:
    """Playback was skipped: release the slot and undo the tentative cooldown.

    The cooldown is only restored if no later invocation has overwritten it.
    """
    reservation = snapshot.find_reservation(token)
    if reservation is None:
        return
    snapshot.throttle.remove(reservation)

    if snapshot.cooldowns.get(reservation.event) == reservation.timestamp:
        if reservation.previous_cooldown is None:
            snapshot.cooldowns.pop(reservation.event, None)
        else:
            snapshot.cooldowns[reservation.event] = reservation.previous_cooldown
