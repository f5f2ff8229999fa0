from datetime import datetime, timedelta, timezone

import pytest

from petsy.errors import ConflictError, MalformedKeyError, ValidationError
from petsy.keys import Key
from petsy.models import Account, Comment, HashEntry, Owner, Pet, Sitter
from petsy.validation import check_birthdate


def test_account_new_normalizes_email():
    account = Account.new(" Alice ", " Alice@Example.com ")
    assert account.name == "Alice"
    assert account.email == "alice@example.com"
    assert account.active is False


def test_account_new_rejects_bad_input():
    with pytest.raises(ValidationError):
        Account.new("", "alice@example.com")
    with pytest.raises(ValidationError):
        Account.new("Alice", "not-an-email")
    with pytest.raises(ValidationError):
        Account.new("Alice", "alice@example.com\r\nbcc:x@example.com")


def test_account_providers():
    account = Account.new("Alice", "alice@example.com")
    account.add_provider("google", "1234")
    account.add_provider("facebook", "99")

    assert account.has_provider("google")
    assert account.has_provider("facebook")
    assert not account.has_provider("github")
    with pytest.raises(ConflictError):
        account.add_provider("google", "5678")
    with pytest.raises(ValidationError):
        account.add_provider("", "1")
    with pytest.raises(ValidationError):
        account.add_provider("github", "")


def test_account_document_round_trip_keeps_providers():
    account = Account(name="Alice", email="alice@example.com", password_hash="opaque")
    account.add_provider("google", "1234")

    restored = Account.from_document(account.to_document())

    assert restored == account
    assert restored.key is None


def test_account_payload_hides_credentials():
    account = Account(name="Alice", email="alice@example.com", password_hash="opaque")
    account.add_provider("google", "1234")
    payload = account.to_payload()
    assert "password_hash" not in payload
    assert "providers" not in payload
    assert payload["email"] == "alice@example.com"


def test_add_common_data_returns_copy():
    account = Account(name="Alice", email="alice@example.com")
    owner = Owner(name="Mallory", email="mallory@example.com", description="Cat person")

    stamped = owner.add_common_data(account)

    assert stamped is not owner
    assert stamped.name == "Alice"
    assert stamped.email == "alice@example.com"
    assert stamped.description == "Cat person"
    assert owner.name == "Mallory"
    assert owner.email == "mallory@example.com"


def test_profile_from_payload_ignores_identity_fields():
    sitter = Sitter.from_payload(
        {
            "name": "Spoofed",
            "email": "spoof@example.com",
            "housing_type": "house",
            "owns_pets": True,
            "has_car": "false",
            "response_rate": 1.0,
            "birthdate": "1990-05-01T00:00:00+00:00",
        }
    )
    assert sitter.name == ""
    assert sitter.email == ""
    assert sitter.housing_type == "house"
    assert sitter.owns_pets is True
    assert sitter.has_car is False
    assert sitter.response_rate == 0.0
    assert sitter.birthdate == datetime(1990, 5, 1, tzinfo=timezone.utc)


def test_from_payload_rejects_bad_types():
    with pytest.raises(ValidationError):
        Sitter.from_payload({"owns_pets": "maybe"})
    with pytest.raises(ValidationError):
        Pet.from_payload({"name": 12})
    with pytest.raises(ValidationError):
        Pet.from_payload({"birthdate": "yesterday"})
    with pytest.raises(ValidationError):
        Pet.from_payload(["not", "an", "object"])


def test_pet_validate():
    Pet(name="Rex", species="dog").validate()
    with pytest.raises(ValidationError):
        Pet(name="", species="dog").validate()
    with pytest.raises(ValidationError):
        Pet(name="Rex", species=" ").validate()
    with pytest.raises(ValidationError):
        Pet(name="Rex", species="dog", pictures=["a"] * 21).validate()
    future = datetime.now(timezone.utc) + timedelta(days=2)
    with pytest.raises(ValidationError):
        Pet(name="Rex", species="dog", birthdate=future).validate()
    ancient = datetime(1800, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        Pet(name="Rex", species="dog", birthdate=ancient).validate()


def test_sitter_validate_bounds():
    Sitter(response_rate=0.5, response_time=3.0).validate()
    with pytest.raises(ValidationError):
        Sitter(response_rate=1.5).validate()
    with pytest.raises(ValidationError):
        Sitter(response_time=-1.0).validate()
    with pytest.raises(ValidationError):
        Owner(bio="x" * 5001).validate()


def test_comment_document_round_trip_skips_transient_fields():
    author_key = Key("account", 1)
    parent_key = Key("comments", 5, Key("pets", 3, Key("owners", 2, author_key)))
    comment = Comment(
        email="alice@example.com",
        author_key=author_key,
        title="Hi",
        body="Lovely dog",
        date=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        parent_key=parent_key,
    )
    comment.author = Account(name="Alice", email="alice@example.com")

    document = comment.to_document()
    assert "author" not in document
    assert "parent" not in document
    assert "replies" not in document
    assert document["author_key"] == author_key.encode()
    assert document["date"] == "2024-01-02T03:04:05.000000+00:00"

    restored = Comment.from_document(document)
    assert restored == comment
    assert restored.author is None
    assert restored.parent_key == parent_key


def test_comment_payload_parent_id():
    parent_key = Key("comments", 5, Key("pets", 3))
    comment = Comment.from_payload({"title": "Re", "body": "Agreed", "parent_id": parent_key.encode()})
    assert comment.parent_key == parent_key
    with pytest.raises(MalformedKeyError):
        Comment.from_payload({"body": "x", "parent_id": "garbage!"})


def test_comment_validate():
    Comment(body="ok").validate()
    with pytest.raises(ValidationError):
        Comment(body="  ").validate()
    with pytest.raises(ValidationError):
        Comment(title="t" * 201, body="ok").validate()


def test_hash_entry_expiry():
    generated = datetime(2024, 1, 1, tzinfo=timezone.utc)
    entry = HashEntry(token="t", value="v", scope="register", generated=generated, valid=timedelta(hours=1))

    assert entry.expires_at == generated + timedelta(hours=1)
    assert not entry.is_expired(generated + timedelta(minutes=59))
    assert entry.is_expired(generated + timedelta(hours=1))
    assert not entry.is_purgeable(timedelta(hours=1), generated + timedelta(hours=2))
    assert entry.is_purgeable(timedelta(hours=1), generated + timedelta(hours=2, seconds=1))

    restored = HashEntry.from_document(entry.to_document())
    assert restored == entry


def test_add_common_data_does_not_share_pictures():
    account = Account(name="Alice", email="alice@example.com")
    owner = Owner(pictures=["https://example.com/a.jpg"])

    stamped = owner.add_common_data(account)
    stamped.pictures.append("https://example.com/b.jpg")

    assert owner.pictures == ["https://example.com/a.jpg"]


def test_birthdate_age_limit_uses_full_dates():
    now = datetime(2026, 1, 15, tzinfo=timezone.utc)

    check_birthdate(datetime(1925, 12, 31, tzinfo=timezone.utc), now=now)
    check_birthdate(datetime(1925, 1, 16, tzinfo=timezone.utc), now=now)
    with pytest.raises(ValidationError):
        check_birthdate(datetime(1925, 1, 15, tzinfo=timezone.utc), now=now)
    with pytest.raises(ValidationError):
        check_birthdate(datetime(2026, 1, 16, tzinfo=timezone.utc), now=now)
