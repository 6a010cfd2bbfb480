"""End-to-end behaviour of GymSystem against a real sqlite file."""

import csv
import io
from datetime import datetime

import pytest

import config
import db
from errors import (
    AlreadyCheckedIn,
    ClassFull,
    ClassNotFound,
    DuplicateIdentifier,
    InvalidCredentials,
    InvalidInput,
    MembershipExpired,
    MembershipNotActive,
    NoActiveMembership,
    NoSuchReservation,
    NotAMember,
    NotAnOperator,
    NotCheckedIn,
    UnknownFacility,
    UnknownPlan,
)
from gym_system import GymSystem

CLASS_START = datetime(2026, 1, 10, 18, 30)


def _zone(gym, facility_key, zone_key):
    facility = next(f for f in gym.list_facilities() if f["key"] == facility_key)
    return next(z for z in facility["zones"] if z["key"] == zone_key)


def _add_yoga(gym, operator, capacity=10, facility_key="F1", start=CLASS_START):
    return gym.add_class(operator, facility_key, "yoga", "Ioana", "Hatha", 60, capacity, start)


# --- accounts -----------------------------------------------------------------

def test_register_login_and_info(gym):
    gym.register_member("ana", "secret1", "Ana Pop")
    session = gym.login("ana", "secret1")

    info = gym.current_user_info(session)

    assert session.role == "member"
    assert info["full_name"] == "Ana Pop"
    assert info["membership_status"] == "inactive"
    assert info["total_visits"] == "0"
    assert info["created_at"] == "2026-01-05 09:00:00"
    assert "password_hash" not in info


def test_register_duplicate(gym):
    gym.register_member("ana", "secret1", "Ana Pop")
    with pytest.raises(DuplicateIdentifier):
        gym.register_operator("ana", "secret1", "Ana Again")


def test_register_validates_inputs(gym):
    with pytest.raises(InvalidInput) as excinfo:
        gym.register_member("", "abc", " ")
    assert len(excinfo.value.errors) == 3
    assert db.load(gym.db_file).accounts == {}


def test_login_failures(gym):
    gym.register_member("ana", "secret1", "Ana Pop")
    with pytest.raises(InvalidCredentials):
        gym.login("ana", "nope-nope")
    with pytest.raises(InvalidCredentials):
        gym.login("ghost", "secret1")


def test_no_session(gym):
    assert gym.current_user_info(None) is None
    with pytest.raises(InvalidCredentials):
        gym.record_visit(None)


def test_operator_info(gym, operator):
    info = gym.current_user_info(operator)
    assert info["access_level"] == "full"
    assert info["role"] == "Operator"


def test_change_credential(gym, ana):
    with pytest.raises(InvalidCredentials):
        gym.change_credential(ana, "wrong-one", "newsecret")
    gym.change_credential(ana, "secret1", "newsecret")
    gym.login("ana", "newsecret")
    with pytest.raises(InvalidCredentials):
        gym.login("ana", "secret1")


def test_bootstrap_operator_must_change_password(db_file, clock, monkeypatch):
    calls = []
    monkeypatch.setattr(config, "setup_logging", lambda *a: calls.append(a))
    gym = GymSystem(db_file=db_file, clock=clock, bootstrap=True)
    assert calls == [()]
    session = gym.login("admin", "admin123")
    assert session.role == "operator"
    assert session.must_change_credential

    session = gym.change_credential(session, "admin123", "better-secret")
    assert not session.must_change_credential
    assert not gym.login("admin", "better-secret").must_change_credential

    # a second start does not recreate or reset the operator
    again = GymSystem(db_file=db_file, clock=clock, bootstrap=True)
    assert not again.login("admin", "better-secret").must_change_credential


# --- membership ---------------------------------------------------------------

def test_member_scenario(gym, ana):
    message = gym.activate_membership(ana, "monthly")
    assert "2026-02-04" in message
    info = gym.current_user_info(ana)
    assert info["membership_status"] == "active"
    assert info["membership_expiry"] == "2026-02-04"

    gym.record_visit(ana)
    assert gym.current_user_info(ana)["total_visits"] == "1"

    assert _zone(gym, "F1", "Cardio")["capacity"] == 25
    gym.check_in(ana, "F1", "Cardio")
    assert _zone(gym, "F1", "Cardio")["occupancy"] == 1
    assert gym.current_user_info(ana)["current_zone"] == "Cardio"

    with pytest.raises(AlreadyCheckedIn):
        gym.check_in(ana, "F1", "Strength")
    assert _zone(gym, "F1", "Strength")["occupancy"] == 0

    gym.check_out(ana, "F1")
    assert _zone(gym, "F1", "Cardio")["occupancy"] == 0
    assert gym.current_user_info(ana)["current_zone"] == "N/A"


def test_unknown_plan(gym, ana):
    with pytest.raises(UnknownPlan):
        gym.activate_membership(ana, "weekly")


def test_membership_operations_need_a_member(gym, operator):
    with pytest.raises(NotAMember):
        gym.activate_membership(operator, "monthly")
    with pytest.raises(NotAMember):
        gym.cancel_membership(operator)
    with pytest.raises(NotAMember):
        gym.record_visit(operator)


def test_cancel_membership(gym, ana, clock):
    with pytest.raises(NoActiveMembership):
        gym.cancel_membership(ana)
    gym.activate_membership(ana, "annual")
    clock.advance(days=3)
    gym.cancel_membership(ana)
    info = gym.current_user_info(ana)
    assert info["membership_status"] == "cancelled"
    assert info["plan"] == "N/A"
    assert info["membership_expiry"] == "2026-01-08"
    with pytest.raises(MembershipNotActive):
        gym.record_visit(ana)


def test_expiry_is_detected_and_persisted(gym, ana, clock):
    gym.activate_membership(ana, "monthly")
    clock.advance(days=31)
    with pytest.raises(MembershipExpired):
        gym.record_visit(ana)
    info = gym.current_user_info(ana)
    assert info["membership_status"] == "expired"
    assert info["total_visits"] == "0"

    gym.activate_membership(ana, "monthly")
    assert gym.current_user_info(ana)["membership_status"] == "active"
    gym.record_visit(ana)


def test_list_plans(gym):
    plans = {p["plan"]: p for p in gym.list_plans()}
    assert plans["monthly"]["duration_days"] == 30
    assert plans["annual"]["price"] == 1500.0


# --- zones --------------------------------------------------------------------

def test_check_in_unknown_facility(gym, active_member):
    ana = active_member("ana")
    with pytest.raises(UnknownFacility):
        gym.check_in(ana, "F9", "Cardio")


def test_check_out_defaults_to_recorded_facility(gym, active_member):
    ana = active_member("ana")
    gym.check_in(ana, "F2", "PullUp")
    with pytest.raises(NotCheckedIn):
        gym.check_out(ana, "F1")
    gym.check_out(ana)
    assert _zone(gym, "F2", "PullUp")["occupancy"] == 0
    with pytest.raises(NotCheckedIn):
        gym.check_out(ana)


def test_occupancy_survives_restart(gym, active_member, db_file, clock):
    gym.check_in(active_member("ana"), "F3", "Strength")
    gym.check_in(active_member("bob"), "F3", "Strength")
    restarted = GymSystem(db_file=db_file, clock=clock)
    assert _zone(restarted, "F3", "Strength")["occupancy"] == 2


# --- classes ------------------------------------------------------------------

def test_add_and_list_classes(gym, operator):
    late = _add_yoga(gym, operator, start=datetime(2026, 1, 12, 19, 0))
    early = gym.add_class(operator, "F2", "pilates", "Mara", "Reformer", 45, 8, CLASS_START)

    rows = gym.list_classes()

    assert [r["id"] for r in rows] == [early, late]
    assert rows[0]["room_location"] == "North Fitness"
    assert rows[0]["available"] is True
    assert [r["id"] for r in gym.list_classes("F1")] == [late]


def test_add_class_requires_operator(gym, ana):
    with pytest.raises(NotAnOperator):
        _add_yoga(gym, ana)


def test_add_class_validation(gym, operator):
    with pytest.raises(UnknownFacility):
        _add_yoga(gym, operator, facility_key="F9")
    with pytest.raises(InvalidInput):
        gym.add_class(operator, "F1", "boxing", "Ioana", "Hatha", 0, -1, CLASS_START)
    assert gym.list_classes() == []


def test_class_capacity_scenario(gym, operator, active_member):
    class_id = _add_yoga(gym, operator, capacity=1)
    a = active_member("a")
    b = active_member("b")

    gym.reserve_class(a, "F1", class_id)
    with pytest.raises(ClassFull):
        gym.reserve_class(b, "F1", class_id)
    assert gym.list_classes()[0]["participants"] == 1

    gym.cancel_reservation(a, "F1", class_id)
    assert gym.list_classes()[0]["participants"] == 0
    gym.reserve_class(b, "F1", class_id)
    assert [r["id"] for r in gym.list_my_reservations(b)] == [class_id]
    assert gym.list_my_reservations(a) == []


def test_reservation_round_trip(gym, operator, active_member):
    class_id = _add_yoga(gym, operator)
    ana = active_member("ana")

    gym.reserve_class(ana, "F1", class_id)
    assert gym.current_user_info(ana)["reserved_classes"] == "1"
    gym.cancel_reservation(ana, "F1", class_id)

    assert gym.current_user_info(ana)["reserved_classes"] == "0"
    assert gym.list_classes()[0]["participants"] == 0
    with pytest.raises(NoSuchReservation):
        gym.cancel_reservation(ana, "F1", class_id)


def test_reserve_needs_active_membership(gym, operator, ana):
    class_id = _add_yoga(gym, operator)
    with pytest.raises(MembershipNotActive):
        gym.reserve_class(ana, "F1", class_id)
    with pytest.raises(NotAMember):
        gym.reserve_class(operator, "F1", class_id)


def test_membership_is_checked_before_the_facility(gym, ana):
    with pytest.raises(MembershipNotActive):
        gym.reserve_class(ana, "NOPE", "c1")
    with pytest.raises(MembershipNotActive):
        gym.check_in(ana, "NOPE", "Cardio")


def test_remove_class(gym, operator, active_member):
    class_id = _add_yoga(gym, operator)
    ana = active_member("ana")
    gym.reserve_class(ana, "F1", class_id)

    with pytest.raises(NotAnOperator):
        gym.remove_class(ana, "F1", class_id)
    with pytest.raises(ClassNotFound):
        gym.remove_class(operator, "F2", class_id)

    gym.remove_class(operator, "F1", class_id)
    assert gym.list_classes() == []
    assert gym.list_my_reservations(ana) == []
    assert gym.current_user_info(ana)["reserved_classes"] == "0"


def test_removed_class_id_is_not_reissued(gym, operator):
    removed = _add_yoga(gym, operator)
    gym.remove_class(operator, "F1", removed)
    fresh = {_add_yoga(gym, operator) for _ in range(5)}
    assert removed not in fresh
    assert len(fresh) == 5


# --- reporting ----------------------------------------------------------------

def test_admin_statistics(gym, operator, active_member, ana):
    bob = active_member("bob")
    active_member("cid")
    class_id = _add_yoga(gym, operator)
    gym.reserve_class(bob, "F1", class_id)
    gym.check_in(bob, "F1", "Cardio")

    stats = gym.admin_statistics(operator)

    assert stats["total_members"] == 3
    assert stats["active_memberships"] == 2
    assert stats["activation_rate"] == 66.7
    assert stats["total_classes"] == 1
    assert stats["total_participants"] == 1
    cardio = next(z for z in stats["zones"] if z["facility"] == "F1" and z["zone"] == "Cardio")
    assert cardio["occupancy"] == 1
    assert cardio["rate"] == 4.0
    assert len(stats["zones"]) == 9

    with pytest.raises(NotAnOperator):
        gym.admin_statistics(ana)


def test_admin_statistics_counts_expired_lazily(gym, operator, active_member, clock):
    active_member("ana")
    clock.advance(days=45)
    assert gym.admin_statistics(operator)["active_memberships"] == 0


def test_export_members_csv(gym, operator, active_member):
    active_member("ana")
    rows = list(csv.DictReader(io.StringIO(gym.export_members_csv(operator).decode("utf-8"))))
    assert [r["identifier"] for r in rows] == ["ana"]
    assert rows[0]["membership_status"] == "active"
    assert "password_hash" not in rows[0]


def test_export_members_csv_when_empty(gym, operator):
    data = gym.export_members_csv(operator).decode("utf-8")
    assert data.splitlines()[0].startswith("identifier,")
