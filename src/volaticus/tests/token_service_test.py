import base64
import hashlib
import hmac
from datetime import timedelta
from unittest.mock import patch

import pytest

from volaticus.catalog import tokens as token_catalog
from volaticus.core.exceptions import Conflict, InvalidInput, NotFound, Unauthorized
from volaticus.db.base import utcnow
from volaticus.services import token_service
from volaticus.services.token_service import (
    delete_token,
    generate_token_value,
    issue_token,
    list_tokens,
    revoke_token,
    validate_token,
)

SECRET = "test-secret-key"


def test_token_value_is_signed():
    raw = base64.urlsafe_b64decode(generate_token_value(SECRET))

    assert len(raw) == 64
    assert hmac.compare_digest(raw[32:], hmac.new(SECRET.encode(), raw[:32], hashlib.sha256).digest())


def test_token_values_differ():
    assert generate_token_value(SECRET) != generate_token_value(SECRET)


def test_issue_and_validate(db_session, user):
    token = issue_token(db_session, user.id, "ci", SECRET)

    validated = validate_token(db_session, token.token)

    assert validated.id == token.id
    assert validated.user_id == user.id
    db_session.expire_all()
    assert token_catalog.get_by_id(db_session, token.id).last_used_at is not None


@pytest.mark.parametrize("name", ["", "   ", None])
def test_issue_requires_name(db_session, user, name):
    with pytest.raises(InvalidInput):
        issue_token(db_session, user.id, name, SECRET)


def test_issue_rejects_past_expiry(db_session, user):
    with pytest.raises(InvalidInput):
        issue_token(db_session, user.id, "ci", SECRET, expires_at=utcnow() - timedelta(minutes=1))


def test_issue_retries_on_collision(db_session, user):
    existing = issue_token(db_session, user.id, "first", SECRET)
    values = iter([existing.token, "fresh-token-value"])

    with patch.object(token_service, "generate_token_value", side_effect=lambda secret: next(values)):
        token = issue_token(db_session, user.id, "second", SECRET)

    assert token.token == "fresh-token-value"


def test_issue_collision_exhausted(db_session, user):
    existing = issue_token(db_session, user.id, "first", SECRET)

    with patch.object(token_service, "generate_token_value", return_value=existing.token):
        with pytest.raises(Conflict):
            issue_token(db_session, user.id, "second", SECRET)


@pytest.mark.parametrize("value", ["", "not-a-token"])
def test_validate_unknown(db_session, value):
    with pytest.raises(Unauthorized):
        validate_token(db_session, value)


def test_validate_revoked(db_session, user):
    token = issue_token(db_session, user.id, "ci", SECRET)
    revoke_token(db_session, user.id, token.id)

    with pytest.raises(Unauthorized):
        validate_token(db_session, token.token)


def test_validate_expired(db_session, user):
    token = issue_token(db_session, user.id, "ci", SECRET, expires_at=utcnow() + timedelta(hours=1))
    token.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    with pytest.raises(Unauthorized):
        validate_token(db_session, token.token)


def test_list_revoke_delete_are_owner_scoped(db_session, user, other_user):
    token = issue_token(db_session, user.id, "ci", SECRET)

    assert [t.id for t in list_tokens(db_session, user.id)] == [token.id]
    assert list_tokens(db_session, other_user.id) == []

    with pytest.raises(NotFound):
        revoke_token(db_session, other_user.id, token.id)
    with pytest.raises(NotFound):
        delete_token(db_session, other_user.id, token.id)

    delete_token(db_session, user.id, token.id)
    assert list_tokens(db_session, user.id) == []
