"""JSON request handlers over the Petsy core.

Each handler takes the store, the resolved principal (or None) and the
decoded request values, and returns a ``(status, payload)`` pair for the
HTTP layer to send. Store failures are not caught here.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Optional

from . import accounts, comments, profiles
from .config import clamp_limit
from .errors import (
    ConflictError,
    InvalidArgumentError,
    MalformedKeyError,
    NoSuchTokenError,
    PermissionDeniedError,
    TokenExpiredError,
    UnknownEntityError,
    ValidationError,
)
from .keys import Key
from .models import Account, Comment, Owner, Pet, Principal, Profile, Sitter
from .repository import Repository
from .store import Store

logger = logging.getLogger(__name__)

Response = tuple[int, Any]


def _error(status: int, message: str) -> Response:
    return status, {"error": message}


def json_errors(fn: Callable[..., Response]) -> Callable[..., Response]:
    """Translate core errors raised by a handler into error responses."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs) -> Response:
        try:
            return fn(*args, **kwargs)
        except UnknownEntityError as exc:
            return _error(404, str(exc))
        except (ValidationError, InvalidArgumentError) as exc:
            return _error(400, str(exc))
        except PermissionDeniedError as exc:
            return _error(403, str(exc))
        except NoSuchTokenError as exc:
            return _error(404, str(exc))
        except TokenExpiredError as exc:
            return _error(410, str(exc))
        except ConflictError as exc:
            logger.info(f"Rejected conflicting write in {fn.__name__}: {exc}")
            return _error(409, str(exc))

    return wrapper


def _unauthorized() -> Response:
    return _error(401, "sign in required")


def _user_key(user_id: str) -> Key:
    key = Key.decode(user_id)
    if key.kind != Account.KIND:
        raise MalformedKeyError("id does not identify an account")
    return key


def _profile_from_payload(model: type[Profile], payload: dict | None, account: Account) -> Profile:
    profile = model.from_payload(payload)
    profile.validate()
    return profile.add_common_data(account)


def _page(items: list, offset: int) -> dict:
    return {"items": [item.to_payload() for item in items], "offset": offset}


# Owner and sitter profiles.

@json_errors
def add_profile(
    store: Store, principal: Optional[Principal], model: type[Profile], payload: dict | None
) -> Response:
    if principal is None:
        return _unauthorized()
    profile = _profile_from_payload(model, payload, principal.account)
    profiles.add_profile_for_user(store, profile, principal.key)
    return 201, profile.to_payload()


@json_errors
def get_own_profile(
    store: Store, principal: Optional[Principal], model: type[Profile]
) -> Response:
    if principal is None:
        return _unauthorized()
    profile = Repository(store, model).get_by_ancestor_key(principal.key)
    if profile is None:
        return _error(404, f"no {model.KIND} profile for this account")
    return 200, profile.to_payload()


@json_errors
def get_profile(store: Store, model: type[Profile], user_id: str) -> Response:
    profile = Repository(store, model).get_by_ancestor_key(_user_key(user_id))
    if profile is None:
        return _error(404, f"{model.KIND} profile does not exist")
    return 200, profile.to_payload()


@json_errors
def update_profile(
    store: Store,
    principal: Optional[Principal],
    model: type[Profile],
    user_id: str,
    payload: dict | None,
) -> Response:
    if principal is None:
        return _unauthorized()
    if _user_key(user_id) != principal.key:
        raise PermissionDeniedError("not allowed to update another user's profile")

    repo = Repository(store, model)
    existing = repo.get_by_ancestor_key(principal.key)
    if existing is None:
        return _error(404, f"{model.KIND} profile does not exist")

    updated = _profile_from_payload(model, payload, principal.account)
    updated.user_key = existing.user_key
    if isinstance(existing, Sitter):
        updated.response_rate = existing.response_rate
        updated.response_time = existing.response_time
    repo.update(existing.key, updated)
    return 200, updated.to_payload()


@json_errors
def list_profiles(
    store: Store, model: type[Profile], offset: int = 0, limit: int | None = None
) -> Response:
    _, items = Repository(store, model).list(offset=max(0, offset), limit=clamp_limit(limit))
    return 200, _page(items, offset)


def add_owner(store: Store, principal: Optional[Principal], payload: dict | None) -> Response:
    return add_profile(store, principal, Owner, payload)


def add_sitter(store: Store, principal: Optional[Principal], payload: dict | None) -> Response:
    return add_profile(store, principal, Sitter, payload)


def get_owner(store: Store, user_id: str) -> Response:
    return get_profile(store, Owner, user_id)


def get_sitter(store: Store, user_id: str) -> Response:
    return get_profile(store, Sitter, user_id)


# Pets.

@json_errors
def add_pet(store: Store, principal: Optional[Principal], payload: dict | None) -> Response:
    if principal is None:
        return _unauthorized()
    owner = profiles.get_owner_for_user(store, principal.key)
    if owner is None:
        return _error(404, "create an owner profile before adding pets")
    pet = Pet.from_payload(payload)
    pet.validate()
    profiles.add_pet_for_owner(store, pet, owner.key)
    return 201, pet.to_payload()


@json_errors
def get_pet(store: Store, pet_id: str) -> Response:
    pet = profiles.get_pet(store, pet_id)
    if pet is None:
        return _error(404, "pet does not exist")
    return 200, pet.to_payload()


@json_errors
def update_pet(
    store: Store, principal: Optional[Principal], pet_id: str, payload: dict | None
) -> Response:
    if principal is None:
        return _unauthorized()
    existing = profiles.get_pet(store, pet_id)
    if existing is None:
        return _error(404, "pet does not exist")
    owner = Repository(store, Owner).get(existing.key.parent) if existing.key.parent else None
    if owner is None or owner.user_key != principal.key:
        raise PermissionDeniedError("not allowed to update another owner's pet")

    pet = Pet.from_payload(payload)
    pet.validate()
    profiles.update_pet(store, existing.key, pet)
    return 200, pet.to_payload()


@json_errors
def list_pets(store: Store, owner_id: str) -> Response:
    owner = profiles.get_owner(store, owner_id)
    if owner is None:
        return _error(404, "owner does not exist")
    _, pets = profiles.get_pets_for_owner(store, owner.key)
    return 200, _page(pets, 0)


# Comments on owners, sitters and pets.

@json_errors
def add_comment(
    store: Store, principal: Optional[Principal], subject_id: str, payload: dict | None
) -> Response:
    if principal is None:
        return _unauthorized()
    comment = Comment.from_payload(payload)
    comment.author_key = principal.key
    comment.email = principal.account.email
    comments.add_comment(store, comment, Key.decode(subject_id))
    comment.author = principal.account
    return 201, comment.to_payload()


@json_errors
def get_comments(store: Store, subject_id: str) -> Response:
    subject_key = Key.decode(subject_id)
    if subject_key.kind not in comments.COMMENTABLE_KINDS:
        raise InvalidArgumentError(f"{subject_key.kind} entities have no comments")
    if store.get(subject_key) is None:
        return _error(404, f"{subject_key.kind} entity does not exist")
    _, items = comments.get_comments_tree_for_entity(store, subject_key)
    return 200, {
        "items": [item.to_payload() for item in items],
        "threads": [item.id for item in comments.root_comments(items)],
    }


# Account activation links.

@json_errors
def verify_activation_link(store: Store, token: str, email: str) -> Response:
    account = accounts.activate_account(store, token, email)
    return 200, account.to_payload()
