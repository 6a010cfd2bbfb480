"""
errors.py
Typed failures raised by the gym core.

Every GymError is recoverable: the caller reports it and carries on.
StoreIOFailure is not a GymError; it means the snapshot could not be read or
committed and the current operation must abort.
"""

from __future__ import annotations


class GymError(Exception):
    """Base class for recoverable domain failures."""

    code = "gym_error"
    default_message = "Operation failed."
    # When set, the store commits the in-memory snapshot before re-raising.
    keep_changes = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class DuplicateIdentifier(GymError):
    code = "duplicate_identifier"
    default_message = "Identifier already exists."


class InvalidCredentials(GymError):
    code = "invalid_credentials"
    default_message = "Invalid identifier or password."


class UnknownPlan(GymError):
    code = "unknown_plan"
    default_message = "Unknown plan."


class UnknownFacility(GymError):
    code = "unknown_facility"
    default_message = "Facility does not exist."


class UnknownZone(GymError):
    code = "unknown_zone"
    default_message = "Zone does not exist."


class ZoneFull(GymError):
    code = "zone_full"

    def __init__(self, zone_name: str, occupancy: int, capacity: int):
        self.zone_name = zone_name
        self.occupancy = occupancy
        self.capacity = capacity
        super().__init__(f"{zone_name} is full. Capacity: {occupancy}/{capacity}")


class AlreadyCheckedIn(GymError):
    code = "already_checked_in"

    def __init__(self, zone_key: str, facility_key: str | None = None):
        self.zone_key = zone_key
        self.facility_key = facility_key
        where = f" at {facility_key}" if facility_key else ""
        super().__init__(f"Already checked in to {zone_key}{where}. Check out first.")


class NotCheckedIn(GymError):
    code = "not_checked_in"
    default_message = "Not checked in to any zone."


class MembershipNotActive(GymError):
    code = "membership_not_active"
    default_message = "Membership is not active."


class MembershipExpired(MembershipNotActive):
    code = "membership_expired"
    default_message = "Membership has expired."
    keep_changes = True


class NoActiveMembership(GymError):
    code = "no_active_membership"
    default_message = "There is no membership to cancel."


class NotAMember(GymError):
    code = "not_a_member"
    default_message = "Only members can do this."


class NotAnOperator(GymError):
    code = "not_an_operator"
    default_message = "Only operators can do this."


class ClassNotFound(GymError):
    code = "class_not_found"
    default_message = "Class not found."


class ClassFull(GymError):
    code = "class_full"

    def __init__(self, class_id: str, participants: int, capacity: int):
        self.class_id = class_id
        self.participants = participants
        self.capacity = capacity
        super().__init__(f"Class {class_id} is full. Places: {participants}/{capacity}")


class AlreadyReserved(GymError):
    code = "already_reserved"
    default_message = "You already have a reservation for this class."


class NoSuchReservation(GymError):
    code = "no_such_reservation"
    default_message = "You do not have a reservation for this class."


class InvalidInput(GymError):
    code = "invalid_input"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(" ".join(self.errors) or "Invalid input.")


class StoreIOFailure(RuntimeError):
    """Snapshot storage is unreadable, corrupt, or a commit failed."""

    code = "store_io_failure"
