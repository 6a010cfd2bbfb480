"""
auth.py
Credential digests (bcrypt) and account registration, login and password change
against a loaded snapshot.
"""

from __future__ import annotations

import logging
from datetime import datetime

import bcrypt

import config
from errors import DuplicateIdentifier, InvalidCredentials, InvalidInput
from models import Account, MemberProfile, OperatorProfile, Snapshot
import utils

logger = logging.getLogger(__name__)


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(_to_bcrypt_secret(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_to_bcrypt_secret(password), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored digest
        logger.warning("Stored password digest is not a valid bcrypt hash")
        return False


# Compared against when the identifier is unknown so both failures cost the same.
_DUMMY_HASH: str | None = None


def _dummy_hash() -> str:
    global _DUMMY_HASH
    if _DUMMY_HASH is None:
        _DUMMY_HASH = hash_password("not-a-real-password")
    return _DUMMY_HASH


def new_member(identifier: str, secret: str, full_name: str, now: datetime) -> Account:
    return Account(identifier, full_name.strip(), hash_password(secret), now, MemberProfile())


def new_operator(identifier: str, secret: str, full_name: str, now: datetime,
                 access_level: str = "standard") -> Account:
    profile = OperatorProfile(access_level=access_level or "standard")
    return Account(identifier, full_name.strip(), hash_password(secret), now, profile)


def register(snapshot: Snapshot, account: Account) -> Account:
    if account.account_id in snapshot.accounts:
        raise DuplicateIdentifier(f"Identifier {account.account_id!r} already exists.")
    snapshot.accounts[account.account_id] = account
    logger.info("Registered %s %s", account.role, account.account_id)
    return account


def authenticate(snapshot: Snapshot, identifier: str, secret: str) -> Account:
    account = snapshot.accounts.get(identifier)
    if account is None:
        verify_password(secret, _dummy_hash())
        raise InvalidCredentials()
    if not verify_password(secret, account.password_hash):
        raise InvalidCredentials()
    return account


def change_credential(account: Account, old_secret: str, new_secret: str) -> None:
    if not verify_password(old_secret, account.password_hash):
        raise InvalidCredentials("Old password is incorrect.")
    errors = utils.validate_secret(new_secret)
    if errors:
        raise InvalidInput(errors)
    account.password_hash = hash_password(new_secret)
    logger.info("Password changed for %s", account.account_id)
