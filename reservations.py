"""
reservations.py
Zone check-in/out and class reservations.

Keeps a member's reserved-class list and the class rosters in step: a class id
is in `profile.reserved_classes` exactly when the member id is on that class's
roster. Everything here mutates an in-memory snapshot; persisting it is the
caller's transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime

from errors import (
    AlreadyCheckedIn,
    AlreadyReserved,
    ClassFull,
    ClassNotFound,
    NoSuchReservation,
    NotCheckedIn,
    UnknownZone,
    ZoneFull,
)
from models import Account, ClassSession, Facility, Snapshot

logger = logging.getLogger(__name__)


def check_in(member: Account, facility: Facility, zone_key: str, now: datetime) -> str:
    profile = member.profile
    profile.ensure_active(now)
    # one zone at a time across every facility
    if profile.current_zone is not None:
        raise AlreadyCheckedIn(profile.current_zone, profile.preferred_facility)
    zone = facility.get_zone(zone_key)
    if zone is None:
        raise UnknownZone(f"Zone {zone_key} does not exist at {facility.name}.")
    if not zone.try_enter():
        raise ZoneFull(zone.name, zone.occupancy, zone.max_capacity)
    profile.current_zone = zone_key
    profile.preferred_facility = facility.key
    logger.info("%s checked in to %s/%s", member.account_id, facility.key, zone_key)
    return f"Checked in to {zone.name} at {facility.name}."


def check_out(member: Account, facility: Facility) -> str:
    profile = member.profile
    if profile.current_zone is None:
        raise NotCheckedIn()
    if profile.preferred_facility != facility.key:
        raise NotCheckedIn(
            f"Not checked in at {facility.name}; current zone is "
            f"{profile.current_zone} at {profile.preferred_facility}."
        )
    zone = facility.get_zone(profile.current_zone)
    if zone is None:
        raise UnknownZone(f"Zone {profile.current_zone} does not exist at {facility.name}.")
    zone.leave()
    profile.current_zone = None
    logger.info("%s checked out of %s/%s", member.account_id, facility.key, zone.name)
    return f"Checked out of {zone.name}."


def _get_class(facility: Facility, class_id: str) -> ClassSession:
    session = facility.get_class(class_id)
    if session is None:
        raise ClassNotFound(f"Class {class_id} does not exist at {facility.name}.")
    return session


def reserve_class(member: Account, facility: Facility, class_id: str, now: datetime) -> ClassSession:
    member.profile.ensure_active(now)
    session = _get_class(facility, class_id)
    if not session.reserve(member.account_id):
        if member.account_id in session.participants:
            raise AlreadyReserved()
        raise ClassFull(class_id, len(session.participants), session.max_capacity)
    member.profile.add_reservation(class_id)
    logger.info("%s reserved class %s", member.account_id, class_id)
    return session


def cancel_reservation(member: Account, facility: Facility, class_id: str) -> ClassSession:
    session = _get_class(facility, class_id)
    if not session.cancel(member.account_id):
        raise NoSuchReservation()
    member.profile.drop_reservation(class_id)
    logger.info("%s cancelled reservation for class %s", member.account_id, class_id)
    return session


def remove_class(snapshot: Snapshot, facility: Facility, class_id: str) -> ClassSession:
    """Delete a class and drop it from every enrolled member's reservations."""
    session = facility.remove_class(class_id)
    if session is None:
        raise ClassNotFound(f"Class {class_id} does not exist at {facility.name}.")
    for member_id in session.participants:
        account = snapshot.accounts.get(member_id)
        if account is not None and account.is_member:
            account.profile.drop_reservation(class_id)
    logger.info("Removed class %s from %s (%d participants)", class_id, facility.key, len(session.participants))
    return session
