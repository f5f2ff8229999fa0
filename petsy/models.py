from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, ClassVar, Optional

from .config import (
    MAX_NAME_LENGTH,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TEXT_LENGTH,
    MAX_TITLE_LENGTH,
)
from .errors import ConflictError, ValidationError
from .keys import Key
from .validation import (
    check_birthdate,
    check_length,
    check_pictures,
    check_range,
    require_email,
    require_text,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _encode_value(codec: str | None, value: Any) -> Any:
    if value is None:
        return None
    if codec == "key":
        return value.encode()
    if codec == "datetime":
        return format_datetime(value)
    if codec == "duration":
        return value.total_seconds()
    if codec == "providers":
        return [{"name": p.name, "id": p.id} for p in value]
    if isinstance(value, list):
        return list(value)
    return value


def _decode_value(codec: str | None, value: Any) -> Any:
    if value is None:
        return None
    if codec == "key":
        return Key.decode(value)
    if codec == "datetime":
        return parse_datetime(value)
    if codec == "duration":
        return timedelta(seconds=float(value))
    if codec == "providers":
        return [Provider(name=item["name"], id=item["id"]) for item in value]
    if isinstance(value, list):
        return list(value)
    return value


def _key_field():
    return field(default=None, metadata={"codec": "key"})


def _datetime_field():
    return field(default=None, metadata={"codec": "datetime"})


def _transient(default_factory: Callable | None = None):
    metadata = {"transient": True}
    if default_factory is not None:
        return field(default_factory=default_factory, compare=False, repr=False, metadata=metadata)
    return field(default=None, compare=False, repr=False, metadata=metadata)


# Payload converters for client JSON.

def _text(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"expected a string, got {type(value).__name__}")
    return value.strip()


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"expected a boolean, got {value!r}")


def _date(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return parse_datetime(str(value))
    except ValueError as exc:
        raise ValidationError(f"invalid date {value!r}") from exc


def _strings(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("expected a list of strings")
    return [_text(item) for item in value]


def _encoded_key(value: Any) -> Key | None:
    if value in (None, ""):
        return None
    return Key.decode(str(value))


@dataclass
class Entity:
    """Base for every record the repository stores.

    Fields flagged transient live only in memory: the storage key, and
    attachments such as a comment's resolved author.
    """

    KIND: ClassVar[str] = ""
    PAYLOAD_FIELDS: ClassVar[dict[str, tuple[str, Callable[[Any], Any]]]] = {}
    PRIVATE_FIELDS: ClassVar[tuple[str, ...]] = ()

    key: Optional[Key] = field(
        default=None, kw_only=True, compare=False, repr=False, metadata={"transient": True}
    )

    @property
    def id(self) -> str | None:
        """Return the encoded storage key, once stored."""
        if self.key is None or self.key.incomplete:
            return None
        return self.key.encode()

    def to_document(self) -> dict:
        document = {}
        for f in fields(self):
            if f.metadata.get("transient"):
                continue
            document[f.name] = _encode_value(f.metadata.get("codec"), getattr(self, f.name))
        return document

    @classmethod
    def from_document(cls, document: dict):
        values = {}
        for f in fields(cls):
            if f.metadata.get("transient") or f.name not in document:
                continue
            values[f.name] = _decode_value(f.metadata.get("codec"), document[f.name])
        return cls(**values)

    @classmethod
    def from_payload(cls, payload: dict | None):
        """Build a record from client JSON, keeping only client-writable fields."""
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError("payload must be a JSON object")
        values = {}
        for name, (field_name, convert) in cls.PAYLOAD_FIELDS.items():
            if payload and name in payload:
                values[field_name] = convert(payload[name])
        return cls(**values)

    def to_payload(self) -> dict:
        payload = {"id": self.id}
        for name, value in self.to_document().items():
            if name not in self.PRIVATE_FIELDS:
                payload[name] = value
        return payload


@dataclass(frozen=True)
class Provider:
    name: str
    id: str


@dataclass
class Account(Entity):
    """A principal's login identity. The email is its unique identity key."""

    KIND: ClassVar[str] = "account"
    PRIVATE_FIELDS: ClassVar[tuple[str, ...]] = ("password_hash", "providers")

    name: str = ""
    email: str = ""
    active: bool = False
    password_hash: Optional[str] = None
    avatar_url: str = ""
    providers: list[Provider] = field(default_factory=list, metadata={"codec": "providers"})

    @classmethod
    def new(cls, name: str, email: str) -> Account:
        """Create an inactive account after checking name and email."""
        require_text("name", name)
        check_length("name", name, MAX_NAME_LENGTH)
        return cls(name=name.strip(), email=require_email(email), active=False)

    def has_provider(self, provider_name: str) -> bool:
        return any(p.name == provider_name for p in self.providers)

    def add_provider(self, provider_name: str, provider_user_id: str) -> None:
        """Link an external identity provider to this account."""
        require_text("provider name", provider_name)
        require_text("provider user id", provider_user_id)
        if self.has_provider(provider_name):
            raise ConflictError(f"account is already linked with {provider_name}")
        self.providers.append(Provider(name=provider_name, id=provider_user_id))


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a request."""

    key: Key
    account: Account


_PROFILE_PAYLOAD = {
    "page": ("page", _text),
    "pictures": ("pictures", _strings),
    "avatar_url": ("avatar_url", _text),
    "bio": ("bio", _text),
    "birthdate": ("birthdate", _date),
    "description": ("description", _text),
    "rating": ("rating", _text),
}


@dataclass
class Profile(Entity):
    """Fields shared by the role profiles a principal may hold.

    name and email are a denormalized copy of the owning account; they are
    only ever set through add_common_data, never from client input.
    """

    user_key: Optional[Key] = _key_field()
    name: str = ""
    email: str = ""
    page: str = ""
    pictures: list[str] = field(default_factory=list)
    avatar_url: str = ""
    bio: str = ""
    birthdate: Optional[datetime] = _datetime_field()
    description: str = ""
    rating: str = ""

    def add_common_data(self, account: Account):
        """Return a copy carrying the account's name and email."""
        return replace(
            self, name=account.name, email=account.email, pictures=list(self.pictures)
        )

    def validate(self) -> None:
        check_length("name", self.name, MAX_NAME_LENGTH)
        check_length("page", self.page, MAX_SHORT_TEXT_LENGTH)
        check_length("avatar url", self.avatar_url, MAX_SHORT_TEXT_LENGTH)
        check_length("bio", self.bio, MAX_TEXT_LENGTH)
        check_length("description", self.description, MAX_TEXT_LENGTH)
        check_length("rating", self.rating, MAX_SHORT_TEXT_LENGTH)
        check_pictures(self.pictures)
        check_birthdate(self.birthdate)


@dataclass
class Owner(Profile):
    KIND: ClassVar[str] = "owners"
    PAYLOAD_FIELDS: ClassVar[dict] = dict(_PROFILE_PAYLOAD)


@dataclass
class Sitter(Profile):
    KIND: ClassVar[str] = "sitters"
    PAYLOAD_FIELDS: ClassVar[dict] = {
        **_PROFILE_PAYLOAD,
        "housing_type": ("housing_type", _text),
        "space": ("space", _text),
        "prices": ("prices", _text),
        "owns_pets": ("owns_pets", _flag),
        "has_car": ("has_car", _flag),
    }

    housing_type: str = ""
    space: str = ""
    prices: str = ""
    owns_pets: bool = False
    has_car: bool = False
    # Maintained by the platform, not writable from client payloads.
    response_rate: float = 0.0
    response_time: float = 0.0

    def validate(self) -> None:
        super().validate()
        check_length("housing type", self.housing_type, MAX_SHORT_TEXT_LENGTH)
        check_length("space", self.space, MAX_SHORT_TEXT_LENGTH)
        check_length("prices", self.prices, MAX_SHORT_TEXT_LENGTH)
        check_range("response rate", self.response_rate, 0.0, 1.0)
        check_range("response time", self.response_time, 0.0)


@dataclass
class Pet(Entity):
    """A pet, stored as a child of its owner's profile."""

    KIND: ClassVar[str] = "pets"
    PAYLOAD_FIELDS: ClassVar[dict] = {
        "name": ("name", _text),
        "species": ("species", _text),
        "breed": ("breed", _text),
        "description": ("description", _text),
        "birthdate": ("birthdate", _date),
        "pictures": ("pictures", _strings),
    }

    owner_id: str = ""
    name: str = ""
    species: str = ""
    breed: str = ""
    description: str = ""
    birthdate: Optional[datetime] = _datetime_field()
    pictures: list[str] = field(default_factory=list)

    def validate(self) -> None:
        require_text("pet name", self.name)
        require_text("species", self.species)
        check_length("pet name", self.name, MAX_NAME_LENGTH)
        check_length("species", self.species, MAX_SHORT_TEXT_LENGTH)
        check_length("breed", self.breed, MAX_SHORT_TEXT_LENGTH)
        check_length("description", self.description, MAX_TEXT_LENGTH)
        check_pictures(self.pictures)
        check_birthdate(self.birthdate)


@dataclass
class Comment(Entity):
    """A comment stored as a child of the record it talks about.

    author, parent and replies are filled in when comments are read back;
    only the keys are persisted.
    """

    KIND: ClassVar[str] = "comments"
    PAYLOAD_FIELDS: ClassVar[dict] = {
        "title": ("title", _text),
        "body": ("body", _text),
        "parent_id": ("parent_key", _encoded_key),
    }

    email: str = ""
    author_key: Optional[Key] = _key_field()
    title: str = ""
    body: str = ""
    date: Optional[datetime] = _datetime_field()
    parent_key: Optional[Key] = _key_field()
    visible: bool = True

    author: Optional[Account] = _transient()
    parent: Optional[Comment] = _transient()
    replies: list[Comment] = _transient(list)

    def validate(self) -> None:
        require_text("comment body", self.body)
        check_length("title", self.title, MAX_TITLE_LENGTH)
        check_length("comment body", self.body, MAX_TEXT_LENGTH)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["parent_id"] = payload.pop("parent_key")
        payload["author_id"] = payload.pop("author_key")
        payload["author_name"] = self.author.name if self.author is not None else None
        return payload


@dataclass
class HashEntry(Entity):
    """A single-use token valid for a limited time after generation."""

    KIND: ClassVar[str] = "hashstore"

    token: str = ""
    value: str = ""
    scope: str = ""
    generated: Optional[datetime] = _datetime_field()
    valid: timedelta = field(default_factory=timedelta, metadata={"codec": "duration"})

    @property
    def expires_at(self) -> datetime:
        return self.generated + self.valid

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utc_now())

    def is_purgeable(self, threshold: timedelta, now: datetime | None = None) -> bool:
        """Return True once the entry has been expired for longer than threshold."""
        return self.expires_at + threshold < (now or utc_now())
