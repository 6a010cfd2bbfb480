"""
gym_system.py
GymSystem: the operations a front end calls.

Each call receives the caller's Session explicitly. Mutating calls run inside
one store transaction (load, authorize, mutate, save); listing calls read the
last committed snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

import auth
import config
import db
import reservations
import utils
from errors import InvalidCredentials, InvalidInput, NotAMember, NotAnOperator, NotCheckedIn
from models import (
    ACTIVE,
    CLASS_CATEGORIES,
    PLANS,
    Account,
    ClassSession,
    Facility,
    Snapshot,
    Trainer,
    get_plan,
    new_class_id,
)

logger = logging.getLogger(__name__)

FORCE_PASSWORD_CHANGE = "force_password_change"


@dataclass(frozen=True)
class Session:
    account_id: str
    role: str
    must_change_credential: bool = False


def _class_row(facility: Facility, session: ClassSession) -> dict:
    return {
        "id": session.class_id,
        "facility": facility.key,
        "category": session.category,
        "trainer": session.trainer.name,
        "specialization": session.trainer.specialization,
        "start_time": utils.to_iso(session.start_time),
        "duration_min": session.duration_min,
        "room_location": session.room_location,
        "participants": len(session.participants),
        "max_capacity": session.max_capacity,
        "occupancy_rate": round(session.occupancy_rate(), 1),
        "available": session.can_reserve(),
    }


class GymSystem:
    def __init__(self, db_file: Path | str | None = None,
                 clock: Callable[[], datetime] | None = None,
                 bootstrap: bool = False):
        self.db_file = Path(db_file) if db_file else config.DB_FILE
        self.clock = clock or utils.now
        db.init_db(self.db_file)
        if bootstrap:
            config.setup_logging()
            self._bootstrap_operator()

    # ---------- helpers ----------

    def _bootstrap_operator(self) -> None:
        with db.transaction(self.db_file) as tx:
            if tx.snapshot.operators():
                return
            account = auth.new_operator(
                config.DEFAULT_OPERATOR_ID,
                config.DEFAULT_OPERATOR_SECRET,
                config.DEFAULT_OPERATOR_NAME,
                self.clock(),
            )
            auth.register(tx.snapshot, account)
            tx.set_setting(FORCE_PASSWORD_CHANGE, account.account_id)
            logger.warning("Created default operator %r; password change required", account.account_id)

    @staticmethod
    def _account(snapshot: Snapshot, session: Session | None) -> Account:
        if session is None:
            raise InvalidCredentials("Not logged in.")
        account = snapshot.accounts.get(session.account_id)
        if account is None:
            raise InvalidCredentials("Session is no longer valid.")
        return account

    def _member(self, snapshot: Snapshot, session: Session | None) -> Account:
        account = self._account(snapshot, session)
        if not account.is_member:
            raise NotAMember()
        return account

    def _operator(self, snapshot: Snapshot, session: Session | None) -> Account:
        account = self._account(snapshot, session)
        if not account.is_operator:
            raise NotAnOperator()
        return account

    # ---------- accounts ----------

    def register_member(self, identifier: str, secret: str, full_name: str) -> None:
        errors = utils.validate_account_inputs(identifier, secret, full_name)
        if errors:
            raise InvalidInput(errors)
        account = auth.new_member(identifier, secret, full_name, self.clock())
        with db.transaction(self.db_file) as tx:
            auth.register(tx.snapshot, account)

    def register_operator(self, identifier: str, secret: str, full_name: str,
                          access_level: str = "standard") -> None:
        errors = utils.validate_account_inputs(identifier, secret, full_name)
        if errors:
            raise InvalidInput(errors)
        account = auth.new_operator(identifier, secret, full_name, self.clock(), access_level)
        with db.transaction(self.db_file) as tx:
            auth.register(tx.snapshot, account)

    def login(self, identifier: str, secret: str) -> Session:
        snapshot = db.load(self.db_file)
        try:
            account = auth.authenticate(snapshot, identifier, secret)
        except InvalidCredentials:
            logger.info("Failed login for %r", identifier)
            raise
        forced = db.get_setting(FORCE_PASSWORD_CHANGE, "", self.db_file) == account.account_id
        logger.info("%s %s logged in", account.role, account.account_id)
        return Session(account.account_id, account.role, must_change_credential=forced)

    def logout(self, session: Session | None) -> None:
        if session is not None:
            logger.info("%s logged out", session.account_id)

    def current_user_info(self, session: Session | None) -> dict[str, str] | None:
        if session is None:
            return None
        account = db.load(self.db_file).accounts.get(session.account_id)
        return account.describe() if account else None

    def change_credential(self, session: Session, old_secret: str, new_secret: str) -> Session:
        with db.transaction(self.db_file) as tx:
            account = self._account(tx.snapshot, session)
            auth.change_credential(account, old_secret, new_secret)
            if tx.get_setting(FORCE_PASSWORD_CHANGE, "") == account.account_id:
                tx.set_setting(FORCE_PASSWORD_CHANGE, "")
        return Session(session.account_id, session.role, must_change_credential=False)

    # ---------- membership ----------

    def list_plans(self) -> list[dict]:
        return [
            {
                "plan": plan.plan_id,
                "price": plan.price,
                "duration_days": plan.duration_days,
                "benefits": list(plan.benefits),
            }
            for plan in PLANS.values()
        ]

    def activate_membership(self, session: Session, plan_id: str) -> str:
        plan = get_plan(plan_id)
        with db.transaction(self.db_file) as tx:
            member = self._member(tx.snapshot, session)
            expiry = member.profile.activate(plan, self.clock())
        logger.info("%s activated %s plan until %s", member.account_id, plan.plan_id, utils.to_iso(expiry))
        return f"Plan {plan.plan_id} activated. Price: {plan.price:.2f}. Valid until {expiry:%Y-%m-%d}."

    def cancel_membership(self, session: Session) -> str:
        with db.transaction(self.db_file) as tx:
            member = self._member(tx.snapshot, session)
            member.profile.cancel(self.clock())
        logger.info("%s cancelled membership", member.account_id)
        return "Membership cancelled."

    def record_visit(self, session: Session) -> str:
        with db.transaction(self.db_file) as tx:
            member = self._member(tx.snapshot, session)
            visited_at = member.profile.record_visit(self.clock())
        return f"Visit recorded at {visited_at:%Y-%m-%d %H:%M:%S}."

    # ---------- zones ----------

    def check_in(self, session: Session, facility_key: str, zone_key: str) -> str:
        with db.transaction(self.db_file) as tx:
            member = self._member(tx.snapshot, session)
            now = self.clock()
            member.profile.ensure_active(now)
            facility = tx.snapshot.get_facility(facility_key)
            return reservations.check_in(member, facility, zone_key, now)

    def check_out(self, session: Session, facility_key: str | None = None) -> str:
        with db.transaction(self.db_file) as tx:
            member = self._member(tx.snapshot, session)
            if member.profile.current_zone is None:
                raise NotCheckedIn()
            facility = tx.snapshot.get_facility(facility_key or member.profile.preferred_facility)
            return reservations.check_out(member, facility)

    # ---------- classes ----------

    def add_class(self, session: Session, facility_key: str, category: str, trainer_name: str,
                  trainer_spec: str, duration_min: int, max_capacity: int, start_time: datetime) -> str:
        errors = utils.validate_class_inputs(category, CLASS_CATEGORIES, duration_min, max_capacity, start_time)
        if not trainer_name.strip():
            errors.append("Trainer name is required.")
        with db.transaction(self.db_file) as tx:
            self._operator(tx.snapshot, session)
            facility = tx.snapshot.get_facility(facility_key)
            if errors:
                raise InvalidInput(errors)
            class_session = ClassSession(
                class_id=new_class_id(tx.snapshot.class_ids()),
                category=category,
                trainer=Trainer(trainer_name.strip(), trainer_spec.strip()),
                duration_min=int(duration_min),
                max_capacity=int(max_capacity),
                start_time=start_time,
                room_location=facility.name,
            )
            facility.add_class(class_session)
        logger.info("Added %s class %s at %s", category, class_session.class_id, facility_key)
        return class_session.class_id

    def remove_class(self, session: Session, facility_key: str, class_id: str) -> None:
        with db.transaction(self.db_file) as tx:
            self._operator(tx.snapshot, session)
            facility = tx.snapshot.get_facility(facility_key)
            reservations.remove_class(tx.snapshot, facility, class_id)

    def reserve_class(self, session: Session, facility_key: str, class_id: str) -> str:
        with db.transaction(self.db_file) as tx:
            member = self._member(tx.snapshot, session)
            now = self.clock()
            member.profile.ensure_active(now)
            facility = tx.snapshot.get_facility(facility_key)
            booked = reservations.reserve_class(member, facility, class_id, now)
        return f"Reservation confirmed for {booked.category} class on {booked.start_time:%Y-%m-%d %H:%M}."

    def cancel_reservation(self, session: Session, facility_key: str, class_id: str) -> str:
        with db.transaction(self.db_file) as tx:
            member = self._member(tx.snapshot, session)
            facility = tx.snapshot.get_facility(facility_key)
            reservations.cancel_reservation(member, facility, class_id)
        return "Reservation cancelled."

    # ---------- read-only projections ----------

    def list_facilities(self) -> list[dict]:
        snapshot = db.load(self.db_file)
        return [
            {
                "key": facility.key,
                "name": facility.name,
                "address": facility.address,
                "zones": [
                    {
                        "key": zone_key,
                        "name": zone.name,
                        "schedule": zone.schedule,
                        "occupancy": zone.occupancy,
                        "capacity": zone.max_capacity,
                        "occupancy_rate": round(zone.occupancy_rate(), 1),
                        "available": zone.can_enter(),
                    }
                    for zone_key, zone in facility.zones.items()
                ],
            }
            for facility in snapshot.facilities.values()
        ]

    def list_classes(self, facility_key: str | None = None) -> list[dict]:
        snapshot = db.load(self.db_file)
        facilities = [snapshot.get_facility(facility_key)] if facility_key else snapshot.facilities.values()
        rows = [_class_row(f, s) for f in facilities for s in f.classes]
        return sorted(rows, key=lambda r: r["start_time"])

    def list_my_reservations(self, session: Session) -> list[dict]:
        snapshot = db.load(self.db_file)
        member = self._member(snapshot, session)
        rows = []
        for class_id in member.profile.reserved_classes:
            found = snapshot.find_class(class_id)
            if found is not None:
                rows.append(_class_row(*found))
        return rows

    def admin_statistics(self, session: Session) -> dict:
        snapshot = db.load(self.db_file)
        self._operator(snapshot, session)
        now = self.clock()
        members = snapshot.members()
        active = sum(1 for m in members if m.profile.effective_status(now) == ACTIVE)
        classes = [s for f in snapshot.facilities.values() for s in f.classes]
        zones = utils.zone_occupancy_frame(snapshot.facilities)
        return {
            "total_members": len(members),
            "active_memberships": active,
            "activation_rate": round(active / len(members) * 100, 1) if members else 0.0,
            "zones": zones.to_dict("records"),
            "total_classes": len(classes),
            "total_participants": sum(len(s.participants) for s in classes),
        }

    def export_members_csv(self, session: Session) -> bytes:
        snapshot = db.load(self.db_file)
        self._operator(snapshot, session)
        return utils.members_to_csv_bytes(snapshot.members())
