"""
models.py
Domain objects: plan catalog, zones, class sessions, facilities, accounts and
the snapshot that holds all of them.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import ClassVar

from errors import (
    MembershipExpired,
    MembershipNotActive,
    NoActiveMembership,
    UnknownFacility,
    UnknownPlan,
)
from utils import format_dt, parse_dt, to_iso

logger = logging.getLogger(__name__)

# Membership statuses
INACTIVE = "inactive"
ACTIVE = "active"
EXPIRED = "expired"
CANCELLED = "cancelled"

ROLE_MEMBER = "member"
ROLE_OPERATOR = "operator"

CLASS_CATEGORIES = ("fitness", "pilates", "yoga")


# ---------- Plan catalog ----------

@dataclass(frozen=True)
class Plan:
    plan_id: str
    price: float
    duration_days: int
    benefits: tuple[str, ...]


PLANS = {
    "monthly": Plan(
        "monthly",
        150.0,
        30,
        (
            "Access to all zones",
            "1 free fitness assessment",
            "Showers and lockers",
        ),
    ),
    "annual": Plan(
        "annual",
        1500.0,
        365,
        (
            "Access to all zones",
            "2 personal trainer sessions per month",
            "Showers and lockers",
            "Priority access at peak hours",
        ),
    ),
}


def get_plan(plan_id: str) -> Plan:
    try:
        return PLANS[plan_id]
    except KeyError:
        raise UnknownPlan(f"Unknown plan: {plan_id}") from None


# ---------- Facilities ----------

@dataclass
class Zone:
    name: str
    schedule: str
    max_capacity: int
    occupancy: int = 0

    def can_enter(self) -> bool:
        return self.occupancy < self.max_capacity

    def try_enter(self) -> bool:
        if not self.can_enter():
            return False
        self.occupancy += 1
        return True

    def leave(self) -> None:
        # never below zero
        if self.occupancy > 0:
            self.occupancy -= 1

    def occupancy_rate(self) -> float:
        if self.max_capacity <= 0:
            return 0.0
        return self.occupancy / self.max_capacity * 100


@dataclass(frozen=True)
class Trainer:
    name: str
    specialization: str


def new_class_id(taken: set[str]) -> str:
    """Random 128-bit id, also checked against the ids in `taken`."""
    while True:
        candidate = uuid.uuid4().hex
        if candidate not in taken:
            return candidate


@dataclass
class ClassSession:
    class_id: str
    category: str
    trainer: Trainer
    duration_min: int
    max_capacity: int
    start_time: datetime
    room_location: str
    participants: list[str] = field(default_factory=list)

    def can_reserve(self) -> bool:
        return len(self.participants) < self.max_capacity

    def reserve(self, member_id: str) -> bool:
        if member_id in self.participants:
            return False
        if not self.can_reserve():
            return False
        self.participants.append(member_id)
        return True

    def cancel(self, member_id: str) -> bool:
        if member_id not in self.participants:
            return False
        self.participants.remove(member_id)
        return True

    def occupancy_rate(self) -> float:
        if self.max_capacity <= 0:
            return 0.0
        return len(self.participants) / self.max_capacity * 100

    def to_record(self) -> dict:
        return {
            "id": self.class_id,
            "category": self.category,
            "trainer": {"name": self.trainer.name, "specialization": self.trainer.specialization},
            "duration_min": self.duration_min,
            "max_capacity": self.max_capacity,
            "start_time": to_iso(self.start_time),
            "room_location": self.room_location,
            "participants": list(self.participants),
        }

    @classmethod
    def from_record(cls, record: dict) -> "ClassSession":
        trainer = record.get("trainer") or {}
        participants: list[str] = []
        for member_id in record.get("participants", []):
            if member_id not in participants:
                participants.append(member_id)
        return cls(
            class_id=record["id"],
            category=record["category"],
            trainer=Trainer(trainer.get("name", ""), trainer.get("specialization", "")),
            duration_min=int(record["duration_min"]),
            max_capacity=int(record["max_capacity"]),
            start_time=parse_dt(record["start_time"]),
            room_location=record.get("room_location", ""),
            participants=participants,
        )


@dataclass
class Facility:
    key: str
    name: str
    address: str
    zones: dict[str, Zone]
    classes: list[ClassSession] = field(default_factory=list)

    def get_zone(self, zone_key: str) -> Zone | None:
        return self.zones.get(zone_key)

    def get_class(self, class_id: str) -> ClassSession | None:
        for session in self.classes:
            if session.class_id == class_id:
                return session
        return None

    def add_class(self, session: ClassSession) -> None:
        self.classes.append(session)

    def remove_class(self, class_id: str) -> ClassSession | None:
        session = self.get_class(class_id)
        if session is not None:
            self.classes.remove(session)
        return session


# Built-in catalog: zone key -> (name, schedule, capacity)
ZONE_CATALOG = {
    "Cardio": ("Cardio Zone", "06:00 - 12:00", 25),
    "Strength": ("Strength Zone", "12:00 - 19:00", 20),
    "PullUp": ("Pull-up Zone", "18:00 - 23:00", 15),
}

FACILITY_CATALOG = {
    "F1": ("Central Fitness", "10 Victoriei Street"),
    "F2": ("North Fitness", "25 Aviatorilor Boulevard"),
    "F3": ("South Fitness", "150 Vacaresti Road"),
}


def build_facilities() -> dict[str, Facility]:
    facilities = {}
    for key, (name, address) in FACILITY_CATALOG.items():
        zones = {
            zone_key: Zone(zone_name, schedule, capacity)
            for zone_key, (zone_name, schedule, capacity) in ZONE_CATALOG.items()
        }
        facilities[key] = Facility(key, name, address, zones)
    return facilities


# ---------- Accounts ----------

@dataclass
class MemberProfile:
    """Member payload plus the membership state machine.

    Expiry is detected lazily: `effective_status` moves an overdue active
    membership to expired and is called by every status-gated operation.
    """

    role: ClassVar[str] = ROLE_MEMBER

    status: str = INACTIVE
    plan_id: str | None = None
    expiry: datetime | None = None
    visits: list[datetime] = field(default_factory=list)
    current_zone: str | None = None
    preferred_facility: str | None = None
    reserved_classes: list[str] = field(default_factory=list)

    def effective_status(self, now: datetime) -> str:
        if self.status == ACTIVE and self.expiry is not None and self.expiry < now:
            self.status = EXPIRED
            logger.info("Membership expired at %s", to_iso(self.expiry))
        return self.status

    def ensure_active(self, now: datetime) -> None:
        was_active = self.status == ACTIVE
        status = self.effective_status(now)
        if status == ACTIVE:
            return
        if was_active:
            raise MembershipExpired(f"Membership expired on {format_dt(self.expiry, '%Y-%m-%d')}.")
        raise MembershipNotActive(f"Membership is {status}.")

    def activate(self, plan: Plan, now: datetime) -> datetime:
        self.status = ACTIVE
        self.plan_id = plan.plan_id
        self.expiry = now + timedelta(days=plan.duration_days)
        return self.expiry

    def record_visit(self, now: datetime) -> datetime:
        self.ensure_active(now)
        self.visits.append(now)
        return now

    def cancel(self, now: datetime) -> None:
        if self.status == INACTIVE:
            raise NoActiveMembership()
        self.status = CANCELLED
        self.expiry = now
        self.plan_id = None

    def add_reservation(self, class_id: str) -> None:
        if class_id not in self.reserved_classes:
            self.reserved_classes.append(class_id)

    def drop_reservation(self, class_id: str) -> None:
        if class_id in self.reserved_classes:
            self.reserved_classes.remove(class_id)

    def describe(self) -> dict[str, str]:
        return {
            "membership_status": self.status,
            "plan": self.plan_id or "N/A",
            "membership_expiry": format_dt(self.expiry, "%Y-%m-%d"),
            "total_visits": str(len(self.visits)),
            "reserved_classes": str(len(self.reserved_classes)),
            "current_zone": self.current_zone or "N/A",
            "preferred_facility": self.preferred_facility or "N/A",
        }

    def to_record(self) -> dict:
        return {
            "status": self.status,
            "plan_id": self.plan_id,
            "expiry": to_iso(self.expiry) if self.expiry else None,
            "visits": [to_iso(v) for v in self.visits],
            "current_zone": self.current_zone,
            "preferred_facility": self.preferred_facility,
            "reserved_classes": list(self.reserved_classes),
        }

    @classmethod
    def from_record(cls, record: dict) -> "MemberProfile":
        expiry = record.get("expiry")
        return cls(
            status=record.get("status") or INACTIVE,
            plan_id=record.get("plan_id"),
            expiry=parse_dt(expiry) if expiry else None,
            visits=[parse_dt(v) for v in record.get("visits") or []],
            current_zone=record.get("current_zone"),
            preferred_facility=record.get("preferred_facility"),
            reserved_classes=list(dict.fromkeys(record.get("reserved_classes") or [])),
        )


@dataclass
class OperatorProfile:
    role: ClassVar[str] = ROLE_OPERATOR

    access_level: str = "standard"

    def describe(self) -> dict[str, str]:
        return {"access_level": self.access_level, "role": "Operator"}

    def to_record(self) -> dict:
        return {"access_level": self.access_level}

    @classmethod
    def from_record(cls, record: dict) -> "OperatorProfile":
        return cls(access_level=record.get("access_level") or "standard")


PROFILE_TYPES = {ROLE_MEMBER: MemberProfile, ROLE_OPERATOR: OperatorProfile}


@dataclass
class Account:
    """Identity and credential digest shared by both roles; `profile` carries the role."""

    account_id: str
    full_name: str
    password_hash: str
    created_at: datetime
    profile: MemberProfile | OperatorProfile

    @property
    def role(self) -> str:
        return self.profile.role

    @property
    def is_member(self) -> bool:
        return self.role == ROLE_MEMBER

    @property
    def is_operator(self) -> bool:
        return self.role == ROLE_OPERATOR

    def describe(self) -> dict[str, str]:
        info = {"identifier": self.account_id, "full_name": self.full_name}
        info.update(self.profile.describe())
        info["created_at"] = format_dt(self.created_at, "%Y-%m-%d %H:%M:%S")
        return info

    def to_record(self) -> dict:
        record = {
            "role": self.role,
            "full_name": self.full_name,
            "password_hash": self.password_hash,
            "created_at": to_iso(self.created_at),
        }
        record.update(self.profile.to_record())
        return record

    @classmethod
    def from_record(cls, account_id: str, record: dict) -> "Account":
        role = record.get("role", ROLE_MEMBER)
        if role not in PROFILE_TYPES:
            raise ValueError(f"Unknown role {role!r} for account {account_id!r}")
        return cls(
            account_id=account_id,
            full_name=record.get("full_name", ""),
            password_hash=record["password_hash"],
            created_at=parse_dt(record["created_at"]),
            profile=PROFILE_TYPES[role].from_record(record),
        )


# ---------- Snapshot ----------

def _expect(value, kind: type, what: str):
    if not isinstance(value, kind):
        raise ValueError(f"{what} must be a {kind.__name__}, got {type(value).__name__}")
    return value


@dataclass
class Snapshot:
    """Complete state of one store: accounts and the facilities' classes.

    Facilities and zones come from the built-in catalog. Zone occupancy is
    rebuilt from the members currently checked in.
    """

    accounts: dict[str, Account] = field(default_factory=dict)
    facilities: dict[str, Facility] = field(default_factory=build_facilities)
    version: int = 0

    def members(self) -> list[Account]:
        return [a for a in self.accounts.values() if a.is_member]

    def operators(self) -> list[Account]:
        return [a for a in self.accounts.values() if a.is_operator]

    def get_facility(self, facility_key: str) -> Facility:
        facility = self.facilities.get(facility_key)
        if facility is None:
            raise UnknownFacility(f"Facility {facility_key} does not exist.")
        return facility

    def class_ids(self) -> set[str]:
        return {s.class_id for f in self.facilities.values() for s in f.classes}

    def find_class(self, class_id: str) -> tuple[Facility, ClassSession] | None:
        for facility in self.facilities.values():
            session = facility.get_class(class_id)
            if session is not None:
                return facility, session
        return None

    def to_document(self) -> dict:
        return {
            "accounts": {aid: a.to_record() for aid, a in self.accounts.items()},
            "facility_classes": {
                key: [s.to_record() for s in f.classes]
                for key, f in self.facilities.items()
                if f.classes
            },
        }

    @classmethod
    def from_document(cls, document: dict, version: int = 0) -> "Snapshot":
        snapshot = cls(version=version)
        accounts = _expect(document.get("accounts") or {}, dict, "accounts")
        for account_id, record in accounts.items():
            record = _expect(record, dict, f"account {account_id!r}")
            snapshot.accounts[account_id] = Account.from_record(account_id, record)
        classes = _expect(document.get("facility_classes") or {}, dict, "facility_classes")
        for key, records in classes.items():
            if key not in snapshot.facilities:
                raise ValueError(f"Classes stored for unknown facility {key!r}")
            facility = snapshot.facilities[key]
            for record in _expect(records, list, f"classes of {key!r}"):
                record = _expect(record, dict, f"class record in {key!r}")
                facility.add_class(ClassSession.from_record(record))
        snapshot._derive_occupancy()
        return snapshot

    def _derive_occupancy(self) -> None:
        for account in self.members():
            profile = account.profile
            if profile.current_zone is None:
                continue
            facility = self.facilities.get(profile.preferred_facility or "")
            zone = facility.get_zone(profile.current_zone) if facility else None
            if zone is None:
                raise ValueError(
                    f"Member {account.account_id!r} is checked in to unknown zone "
                    f"{profile.current_zone!r} at {profile.preferred_facility!r}"
                )
            if not zone.try_enter():
                raise ValueError(
                    f"{zone.name} at {facility.key} holds more checked-in members "
                    f"than its capacity of {zone.max_capacity}"
                )
