"""Exception types raised by the Petsy core."""

from __future__ import annotations


class PetsyError(Exception):
    """Base class for every error raised by the core."""


class InvalidArgumentError(PetsyError, ValueError):
    """A required argument was empty, missing or of the wrong shape."""


class MalformedKeyError(InvalidArgumentError):
    """An encoded identifier could not be decoded into a storage key."""


class UnknownEntityError(InvalidArgumentError):
    """An operation referenced a record that is not stored."""


class ValidationError(PetsyError, ValueError):
    """A record failed its field checks."""


class ConflictError(PetsyError):
    """A write would break a uniqueness rule."""


class AlreadyStoredError(ConflictError):
    """An entity that already has a key was added again."""


class ProfileExistsError(ConflictError):
    """The principal already holds a profile of this kind."""


class PetExistsError(ConflictError):
    """The owner already has a pet with this name."""


class AccountExistsError(ConflictError):
    """Another account is registered with this email."""


class DuplicateTokenError(ConflictError):
    """The hash store already holds an entry for this token."""


class NoSuchTokenError(PetsyError, LookupError):
    """No hash store entry matches the token."""


class TokenExpiredError(PetsyError):
    """The hash store entry exists but its validity period has elapsed."""


class PermissionDeniedError(PetsyError):
    """The principal may not modify the requested record."""
