"""Account registration, provider linking and activation."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from . import hashstore
from .config import ACTIVATION_TOKEN_BYTES, REGISTER_SCOPE, get_activation_ttl
from .errors import (
    AccountExistsError,
    ConflictError,
    InvalidArgumentError,
    MalformedKeyError,
    TokenExpiredError,
    UnknownEntityError,
)
from .keys import Key
from .models import Account, Principal
from .repository import Repository
from .store import Store
from .validation import normalize_email

logger = logging.getLogger(__name__)


def _accounts(store: Store) -> Repository[Account]:
    return Repository(store, Account)


def register_account(
    store: Store, name: str, email: str, password_hash: str | None = None
) -> Account:
    """Create an inactive account, refusing an email that is already registered."""
    account = Account.new(name, email)
    account.password_hash = password_hash
    _accounts(store).add_if_absent(
        account, filters={"email": account.email}, conflict=AccountExistsError
    )
    logger.info(f"Registered account {account.email}.")
    return account


def get_account(store: Store, encoded_id: str) -> Optional[Account]:
    return _accounts(store).get_by_id(encoded_id)


def get_account_by_email(store: Store, email: str) -> Optional[Account]:
    return _accounts(store).get_by_email(normalize_email(email))


def update_account(store: Store, account: Account) -> Key:
    if account.key is None:
        raise InvalidArgumentError("account has not been stored yet")
    return _accounts(store).update(account.key, account)


def link_provider(
    store: Store, account: Account, provider_name: str, provider_user_id: str
) -> Key:
    """Link an external identity provider to a stored account."""
    account.add_provider(provider_name, provider_user_id)
    return update_account(store, account)


def issue_activation_token(
    store: Store,
    account: Account,
    *,
    ttl: timedelta | None = None,
    now: datetime | None = None,
) -> str:
    """Store and return a new single-use activation token for account."""
    token = secrets.token_urlsafe(ACTIVATION_TOKEN_BYTES)
    hashstore.add_entry(
        store, token, account.email, REGISTER_SCOPE, ttl or get_activation_ttl(), now=now
    )
    return token


def resend_activation_token(
    store: Store, email: str, *, now: datetime | None = None
) -> str:
    """Replace any earlier activation tokens for email with a fresh one."""
    account = get_account_by_email(store, email)
    if account is None:
        raise UnknownEntityError(f"no account registered for {email}")
    if account.active:
        raise ConflictError("account is already activated")

    keys, _ = hashstore.get_entries_same_value_scope(store, account.email, REGISTER_SCOPE)
    if keys:
        store.delete_multi(keys)
    return issue_activation_token(store, account, now=now)


def activate_account(
    store: Store, token: str, email: str, *, now: datetime | None = None
) -> Account:
    """Mark the account active and consume its activation token.

    Raises NoSuchTokenError for unknown links and TokenExpiredError for
    links past their validity period.
    """
    normalized = normalize_email(email)
    if not token or not normalized:
        raise InvalidArgumentError("activation token and email are required")
    if not hashstore.is_valid_entry(store, token, normalized, REGISTER_SCOPE, now=now):
        raise TokenExpiredError("activation link has expired")

    account = get_account_by_email(store, normalized)
    if account is None:
        raise UnknownEntityError(f"no account registered for {normalized}")
    account.active = True
    update_account(store, account)
    hashstore.delete_entry(store, token)
    logger.info(f"Activated account {account.email}.")
    return account


def resolve_principal(store: Store, account_id: str | None) -> Optional[Principal]:
    """Return the principal for an encoded account id from the session layer."""
    if not account_id:
        return None
    try:
        account = get_account(store, account_id)
    except MalformedKeyError:
        return None
    if account is None:
        return None
    return Principal(key=account.key, account=account)
