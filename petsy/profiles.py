"""Owner, sitter and pet operations.

Profiles are stored as children of the owning account's key and pets as
children of their owner's profile key. Uniqueness (one profile of each kind
per account, one pet name per owner) is enforced by a single insert-if-absent
call scoped to that parent key.
"""

from __future__ import annotations

import logging
from typing import Optional, TypeVar

from .errors import InvalidArgumentError, PetExistsError, ProfileExistsError, UnknownEntityError
from .keys import Key
from .models import Account, Owner, Pet, Profile, Sitter
from .repository import Repository
from .store import Store
from .validation import normalize_email

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=Profile)


def _account_key_for_email(store: Store, email: str) -> Key:
    account = Repository(store, Account).get_by_email(normalize_email(email))
    if account is None:
        raise UnknownEntityError(f"no account registered for {email}")
    return account.key


def add_profile_for_user(store: Store, profile: P, user_key: Key) -> Key:
    """Store profile as the single profile of its kind for the account at user_key."""
    if user_key is None:
        raise InvalidArgumentError("user key cannot be None")
    profile.user_key = user_key
    key = Repository(store, type(profile)).add_if_absent(
        profile, user_key, conflict=ProfileExistsError
    )
    logger.info(f"Added {profile.KIND} profile {key} for {user_key}.")
    return key


def add_owner_for_user(store: Store, owner: Owner, user_key: Key) -> Key:
    return add_profile_for_user(store, owner, user_key)


def add_sitter_for_user(store: Store, sitter: Sitter, user_key: Key) -> Key:
    return add_profile_for_user(store, sitter, user_key)


def add_owner(store: Store, owner: Owner) -> Key:
    """Store owner for the account registered with owner.email."""
    return add_owner_for_user(store, owner, _account_key_for_email(store, owner.email))


def add_sitter(store: Store, sitter: Sitter) -> Key:
    """Store sitter for the account registered with sitter.email."""
    return add_sitter_for_user(store, sitter, _account_key_for_email(store, sitter.email))


def get_owner(store: Store, encoded_id: str) -> Optional[Owner]:
    return Repository(store, Owner).get_by_id(encoded_id)


def get_sitter(store: Store, encoded_id: str) -> Optional[Sitter]:
    return Repository(store, Sitter).get_by_id(encoded_id)


def get_owner_for_user(store: Store, user_key: Key) -> Optional[Owner]:
    return Repository(store, Owner).get_by_ancestor_key(user_key)


def get_sitter_for_user(store: Store, user_key: Key) -> Optional[Sitter]:
    return Repository(store, Sitter).get_by_ancestor_key(user_key)


def get_owner_by_email(store: Store, email: str) -> Optional[Owner]:
    return Repository(store, Owner).get_by_email(normalize_email(email))


def get_sitter_by_email(store: Store, email: str) -> Optional[Sitter]:
    return Repository(store, Sitter).get_by_email(normalize_email(email))


def update_owner(store: Store, key: Key, owner: Owner) -> Key:
    return Repository(store, Owner).update(key, owner)


def update_sitter(store: Store, key: Key, sitter: Sitter) -> Key:
    return Repository(store, Sitter).update(key, sitter)


def list_owners(
    store: Store, offset: int = 0, limit: int | None = None
) -> tuple[list[Key], list[Owner]]:
    return Repository(store, Owner).list(offset=offset, limit=limit)


def list_sitters(
    store: Store, offset: int = 0, limit: int | None = None
) -> tuple[list[Key], list[Sitter]]:
    return Repository(store, Sitter).list(offset=offset, limit=limit)


def add_pet_for_owner(store: Store, pet: Pet, owner_key: Key) -> Key:
    """Store pet under owner_key, rejecting a name the owner already uses."""
    if owner_key is None:
        raise InvalidArgumentError("owner key cannot be None")
    pet.owner_id = owner_key.encode()
    key = Repository(store, Pet).add_if_absent(
        pet, owner_key, filters={"name": pet.name}, conflict=PetExistsError
    )
    logger.info(f"Added pet {pet.name!r} as {key}.")
    return key


def add_pet(store: Store, pet: Pet, owner_email: str) -> Key:
    """Store pet for the owner profile registered with owner_email."""
    owner = get_owner_by_email(store, owner_email)
    if owner is None:
        raise UnknownEntityError(f"no owner profile registered for {owner_email}")
    return add_pet_for_owner(store, pet, owner.key)


def get_pet(store: Store, encoded_id: str) -> Optional[Pet]:
    return Repository(store, Pet).get_by_id(encoded_id)


def get_pet_for_owner(store: Store, owner_key: Key, name: str) -> Optional[Pet]:
    if owner_key is None:
        raise InvalidArgumentError("owner key cannot be None")
    _, pets = Repository(store, Pet).list(ancestor=owner_key, filters={"name": name}, limit=1)
    return pets[0] if pets else None


def get_pet_by_owner_email(store: Store, email: str, name: str) -> Optional[Pet]:
    owner = get_owner_by_email(store, email)
    if owner is None:
        return None
    return get_pet_for_owner(store, owner.key, name)


def get_pets_for_owner(store: Store, owner_key: Key) -> tuple[list[Key], list[Pet]]:
    if owner_key is None:
        raise InvalidArgumentError("owner key cannot be None")
    return Repository(store, Pet).list(ancestor=owner_key)


def get_pets_by_owner_email(store: Store, email: str) -> tuple[list[Key], list[Pet]]:
    owner = get_owner_by_email(store, email)
    if owner is None:
        raise UnknownEntityError(f"no owner profile registered for {email}")
    return get_pets_for_owner(store, owner.key)


def update_pet(store: Store, key: Key, pet: Pet) -> Key:
    """Overwrite the pet at key, refusing to take another pet's name."""
    if key is None:
        raise InvalidArgumentError("key cannot be None")
    if key.parent is not None:
        clash = get_pet_for_owner(store, key.parent, pet.name)
        if clash is not None and clash.key != key:
            raise PetExistsError(f"owner already has a pet named {pet.name!r}")
        pet.owner_id = key.parent.encode()
    return Repository(store, Pet).update(key, pet)
