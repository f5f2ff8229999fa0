from datetime import datetime, timedelta, timezone

import pytest

from petsy import accounts, comments, profiles
from petsy.errors import InvalidArgumentError, UnknownEntityError, ValidationError
from petsy.keys import Key
from petsy.models import Comment, Owner, Pet
from petsy.repository import Repository
from petsy.store import MemoryStore

BASE = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def alice(store):
    return accounts.register_account(store, "Alice", "alice@example.com")


@pytest.fixture
def bob(store):
    return accounts.register_account(store, "Bob", "bob@example.com")


@pytest.fixture
def pet_key(store, alice):
    owner_key = profiles.add_owner_for_user(store, Owner().add_common_data(alice), alice.key)
    return profiles.add_pet_for_owner(store, Pet(name="Rex", species="dog"), owner_key)


def _comment(author, body, minutes, parent_key=None):
    return Comment(
        email=author.email,
        author_key=author.key,
        body=body,
        date=BASE + timedelta(minutes=minutes),
        parent_key=parent_key,
    )


def test_add_comment_stores_under_subject(store, alice, pet_key):
    key = comments.add_comment(store, Comment(author_key=alice.key, body="Good boy"), pet_key)

    assert key.parent == pet_key
    stored = comments.get_comment(store, key.encode())
    assert stored.body == "Good boy"
    assert stored.date is not None
    assert stored.visible is True


def test_add_comment_requires_author(store, pet_key):
    with pytest.raises(InvalidArgumentError):
        comments.add_comment(store, Comment(body="anonymous"), pet_key)


def test_add_comment_checks_subject(store, alice, pet_key):
    comment = Comment(author_key=alice.key, body="hi")
    with pytest.raises(InvalidArgumentError):
        comments.add_comment(store, comment, None)
    with pytest.raises(InvalidArgumentError):
        comments.add_comment(store, comment, alice.key)
    with pytest.raises(InvalidArgumentError):
        comments.add_comment(store, comment, Key("pets", parent=pet_key.parent))
    with pytest.raises(UnknownEntityError):
        comments.add_comment(store, comment, Key("pets", 99999, pet_key.parent))
    with pytest.raises(ValidationError):
        comments.add_comment(store, Comment(author_key=alice.key, body=""), pet_key)


def test_comments_for_entity_are_oldest_first_with_authors(store, alice, bob, pet_key):
    comments.add_comment(store, _comment(bob, "second", 2), pet_key)
    comments.add_comment(store, _comment(alice, "first", 1), pet_key)
    comments.add_comment(store, _comment(bob, "third", 3), pet_key)

    keys, found = comments.get_comments_for_entity(store, pet_key)

    assert [c.body for c in found] == ["first", "second", "third"]
    assert [c.author.name for c in found] == ["Alice", "Bob", "Bob"]
    assert all(key.parent == pet_key for key in keys)

    _, page = comments.get_comments_for_entity(store, pet_key, offset=1, limit=1)
    assert [c.body for c in page] == ["second"]
    with pytest.raises(InvalidArgumentError):
        comments.get_comments_for_entity(store, None)


def test_attach_authors_fetches_each_author_once(store, alice, bob):
    calls = []
    real_get_multi = store.get_multi

    def counting_get_multi(keys):
        keys = list(keys)
        calls.append(keys)
        return real_get_multi(keys)

    store.get_multi = counting_get_multi
    items = [_comment(alice, "a", 1), _comment(bob, "b", 2), _comment(alice, "c", 3)]

    comments.attach_authors(store, items)

    assert calls == [[alice.key, bob.key]]
    assert [c.author.email for c in items] == [
        "alice@example.com",
        "bob@example.com",
        "alice@example.com",
    ]


def test_attach_authors_tolerates_deleted_accounts(store, alice, bob):
    items = [_comment(alice, "a", 1), _comment(bob, "b", 2)]
    Repository(store, type(bob)).delete(bob.key)

    comments.attach_authors(store, items)

    assert items[0].author.name == "Alice"
    assert items[1].author is None
    assert items[1].to_payload()["author_name"] is None


def test_comments_for_email_only_returns_that_author(store, alice, bob, pet_key):
    comments.add_comment(store, _comment(alice, "old", 1), pet_key)
    comments.add_comment(store, _comment(bob, "bob", 2), pet_key)
    comments.add_comment(store, _comment(alice, "new", 3), pet_key)

    _, found = comments.get_comments_for_email(store, "alice@example.com")

    assert [c.body for c in found] == ["new", "old"]
    with pytest.raises(InvalidArgumentError):
        comments.get_comments_for_email(store, "")


def test_recent_comments_span_subjects(store, alice, pet_key):
    owner_key = pet_key.parent
    comments.add_comment(store, _comment(alice, "on pet", 1), pet_key)
    comments.add_comment(store, _comment(alice, "on owner", 2), owner_key)

    _, found = comments.get_recent_comments(store, limit=10)

    assert [c.body for c in found] == ["on owner", "on pet"]


def test_comment_tree_links_replies(store, alice, bob, pet_key):
    root = comments.add_comment(store, _comment(alice, "root", 1), pet_key)
    reply = comments.add_comment(store, _comment(bob, "reply", 2, parent_key=root), pet_key)
    comments.add_comment(store, _comment(alice, "nested", 3, parent_key=reply), pet_key)
    comments.add_comment(store, _comment(bob, "second root", 4), pet_key)

    _, tree = comments.get_comments_tree_for_entity(store, pet_key)
    by_body = {c.body: c for c in tree}

    assert [c.body for c in comments.root_comments(tree)] == ["root", "second root"]
    assert [c.body for c in by_body["root"].replies] == ["reply"]
    assert by_body["reply"].parent is by_body["root"]
    assert [c.body for c in by_body["reply"].replies] == ["nested"]
    assert by_body["nested"].replies == []


def test_orphan_replies_are_roots(store, alice, pet_key):
    missing = Key("comments", 123456, pet_key)
    comments.add_comment(store, _comment(alice, "orphan", 1, parent_key=missing), pet_key)

    _, tree = comments.get_comments_tree_for_entity(store, pet_key)

    assert tree[0].parent is None
    assert comments.root_comments(tree) == tree


def test_parent_cycles_do_not_loop(store, alice, pet_key):
    first = comments.add_comment(store, _comment(alice, "first", 1), pet_key)
    second = comments.add_comment(store, _comment(alice, "second", 2, parent_key=first), pet_key)
    looped = comments.get_comment(store, first.encode())
    looped.parent_key = second
    comments.update_comment(store, first, looped)

    _, tree = comments.get_comments_tree_for_entity(store, pet_key)
    by_body = {c.body: c for c in tree}

    assert by_body["first"].parent is by_body["second"]
    assert by_body["second"].parent is by_body["first"]
    assert comments.root_comments(tree) == []


def test_link_comments_resets_previous_links():
    a = Comment(body="a")
    b = Comment(body="b", parent_key=Key("comments", 1))
    keys = [Key("comments", 1), Key("comments", 2)]

    comments.link_comments(keys, [a, b])
    comments.link_comments(keys, [a, b])

    assert a.replies == [b]
    assert b.parent is a


def test_owner_comments_exclude_comments_on_its_pets(store, alice, bob, pet_key):
    owner_key = pet_key.parent
    comments.add_comment(store, _comment(bob, "on pet", 1), pet_key)
    comments.add_comment(store, _comment(bob, "on owner", 2), owner_key)

    _, owner_comments = comments.get_comments_for_entity(store, owner_key)
    _, pet_comments = comments.get_comments_for_entity(store, pet_key)
    _, tree = comments.get_comments_tree_for_entity(store, owner_key)

    assert [c.body for c in owner_comments] == ["on owner"]
    assert [c.body for c in pet_comments] == ["on pet"]
    assert [c.body for c in comments.root_comments(tree)] == ["on owner"]


def test_comments_for_email_ignores_case(store, alice, pet_key):
    comments.add_comment(store, _comment(alice, "hello", 1), pet_key)

    _, found = comments.get_comments_for_email(store, " Alice@Example.COM ")

    assert [c.body for c in found] == ["hello"]
