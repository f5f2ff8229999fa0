"""Comments on owners, sitters and pets.

A comment's key is always created under the key of the record it talks
about, so an ancestor query on that record returns its comments. Replies
point at their parent comment through parent_key.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import InvalidArgumentError, UnknownEntityError
from .keys import Key
from .models import Account, Comment, Owner, Pet, Sitter, utc_now
from .repository import Repository
from .store import Store
from .validation import normalize_email

logger = logging.getLogger(__name__)

COMMENTABLE_KINDS = (Owner.KIND, Sitter.KIND, Pet.KIND)


def _check_subject(store: Store, subject_key: Key | None) -> Key:
    if subject_key is None:
        raise InvalidArgumentError("subject key cannot be None")
    if subject_key.incomplete:
        raise InvalidArgumentError(f"subject key {subject_key} is incomplete")
    if subject_key.kind not in COMMENTABLE_KINDS:
        raise InvalidArgumentError(f"{subject_key.kind} entities cannot be commented on")
    if store.get(subject_key) is None:
        raise UnknownEntityError(f"no {subject_key.kind} entity stored as {subject_key}")
    return subject_key


def add_comment(store: Store, comment: Comment, subject_key: Key) -> Key:
    """Store comment under subject_key.

    The caller fills author_key (and email) from the authenticated principal.
    """
    if comment.author_key is None:
        raise InvalidArgumentError("comment author key must be set")
    _check_subject(store, subject_key)
    comment.validate()
    if comment.date is None:
        comment.date = utc_now()
    key = Repository(store, Comment).add(comment, parent=subject_key)
    logger.info(f"Added comment {key} by {comment.author_key}.")
    return key


def update_comment(store: Store, key: Key, comment: Comment) -> Key:
    return Repository(store, Comment).update(key, comment)


def get_comment(store: Store, encoded_id: str) -> Optional[Comment]:
    return Repository(store, Comment).get_by_id(encoded_id)


def attach_authors(store: Store, comments: list[Comment]) -> list[Comment]:
    """Fill comment.author with one batch fetch over the distinct author keys.

    Authors that are no longer stored leave comment.author as None.
    """
    author_keys = list(dict.fromkeys(c.author_key for c in comments if c.author_key is not None))
    if not author_keys:
        return comments
    documents = store.get_multi(author_keys)
    authors: dict[Key, Account] = {}
    for key, document in zip(author_keys, documents):
        if document is None:
            continue
        account = Account.from_document(document)
        account.key = key
        authors[key] = account
    for comment in comments:
        comment.author = authors.get(comment.author_key)
    return comments


def _run_query(store: Store, **query) -> tuple[list[Key], list[Comment]]:
    keys, comments = Repository(store, Comment).list(**query)
    attach_authors(store, comments)
    return keys, comments


def get_comments_for_entity(
    store: Store, subject_key: Key, offset: int = 0, limit: int | None = None
) -> tuple[list[Key], list[Comment]]:
    """Return the comments attached to subject_key, oldest first.

    Comments on the subject's own children (an owner's pets) are not included.
    """
    if subject_key is None:
        raise InvalidArgumentError("subject key cannot be None")
    return _run_query(store, parent=subject_key, order="date", offset=offset, limit=limit)


def get_comments_for_email(
    store: Store, email: str, offset: int = 0, limit: int | None = None
) -> tuple[list[Key], list[Comment]]:
    """Return comments written by the author with this email, newest first."""
    email = normalize_email(email)
    if not email:
        raise InvalidArgumentError("email cannot be empty")
    return _run_query(store, filters={"email": email}, order="-date", offset=offset, limit=limit)


def get_recent_comments(
    store: Store, offset: int = 0, limit: int | None = None
) -> tuple[list[Key], list[Comment]]:
    return _run_query(store, order="-date", offset=offset, limit=limit)


def link_comments(keys: list[Key], comments: list[Comment]) -> list[Comment]:
    """Wire parent and replies for comments read from one subject.

    Each comment resolves its parent with a single lookup, so parent_key
    cycles are stored as-is and never walked. A parent_key that is not in
    the list leaves comment.parent as None.
    """
    by_key = dict(zip(keys, comments))
    for comment in comments:
        comment.parent = None
        comment.replies = []
    for comment in comments:
        if comment.parent_key is None:
            continue
        parent = by_key.get(comment.parent_key)
        if parent is None:
            continue
        comment.parent = parent
        parent.replies.append(comment)
    return comments


def get_comments_tree_for_entity(
    store: Store, subject_key: Key
) -> tuple[list[Key], list[Comment]]:
    """Return the subject's comments with parent/replies links resolved."""
    keys, comments = get_comments_for_entity(store, subject_key)
    return keys, link_comments(keys, comments)


def root_comments(comments: list[Comment]) -> list[Comment]:
    """Return the comments that start a thread."""
    return [comment for comment in comments if comment.parent is None]
