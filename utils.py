"""
utils.py
Dates, validation, tabular exports.
"""

from __future__ import annotations

from datetime import datetime

import pandas as pd

import config


def now() -> datetime:
    return datetime.now().replace(microsecond=0)


def to_iso(dt: datetime) -> str:
    return dt.isoformat(timespec="seconds")


def parse_dt(value: str) -> datetime:
    return datetime.fromisoformat(value)


def format_dt(dt: datetime | None, fmt: str) -> str:
    return dt.strftime(fmt) if dt else "N/A"


def validate_account_inputs(identifier: str, secret: str, full_name: str) -> list[str]:
    errors: list[str] = []
    if not identifier.strip():
        errors.append("Identifier is required.")
    elif identifier != identifier.strip():
        errors.append("Identifier must not start or end with spaces.")
    if not full_name.strip():
        errors.append("Full name is required.")
    errors.extend(validate_secret(secret))
    return errors


def validate_secret(secret: str) -> list[str]:
    if len(secret) < config.MIN_SECRET_LENGTH:
        return [f"Password must be at least {config.MIN_SECRET_LENGTH} characters."]
    return []


def validate_class_inputs(category: str, categories, duration_min, max_capacity, start_time) -> list[str]:
    errors: list[str] = []
    if category not in categories:
        errors.append(f"Class category must be one of: {', '.join(categories)}.")
    try:
        if int(duration_min) <= 0:
            errors.append("Duration must be a positive number of minutes.")
    except (TypeError, ValueError):
        errors.append("Duration must be numeric.")
    try:
        if int(max_capacity) < 0:
            errors.append("Capacity must not be negative.")
    except (TypeError, ValueError):
        errors.append("Capacity must be numeric.")
    if not isinstance(start_time, datetime):
        errors.append("Start time must be a date and time.")
    return errors


def zone_occupancy_frame(facilities) -> pd.DataFrame:
    """One row per (facility, zone) with current occupancy and rate."""
    rows = [
        {
            "facility": facility.key,
            "facility_name": facility.name,
            "zone": zone_key,
            "zone_name": zone.name,
            "occupancy": zone.occupancy,
            "capacity": zone.max_capacity,
            "rate": round(zone.occupancy_rate(), 1),
        }
        for facility in facilities.values()
        for zone_key, zone in facility.zones.items()
    ]
    if not rows:
        return pd.DataFrame(
            columns=["facility", "facility_name", "zone", "zone_name", "occupancy", "capacity", "rate"]
        )
    return pd.DataFrame(rows)


def members_to_csv_bytes(members) -> bytes:
    """CSV export of member accounts. Credential digests are never exported."""
    df = pd.DataFrame([m.describe() for m in members])
    if df.empty:
        df = pd.DataFrame(columns=["identifier", "full_name", "membership_status", "plan", "membership_expiry"])
    return df.to_csv(index=False).encode("utf-8")
