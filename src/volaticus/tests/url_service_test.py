import re
from datetime import timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from volaticus.catalog import urls as url_catalog
from volaticus.core.exceptions import (
    CatalogError,
    CollisionExhausted,
    Conflict,
    Expired,
    Forbidden,
    InvalidInput,
    NotFound,
)
from volaticus.db.base import utcnow
from volaticus.models import ClickEvent
from volaticus.services import url_service as url_module
from volaticus.services.analytics import ClickRecorder, RequestInfo
from volaticus.services.geoip import GeoIPResolver
from volaticus.services.url_service import URLService

from .conftest import FakeGeoReader, InlineExecutor, TestingSessionLocal

VISITOR = RequestInfo(referrer="https://ref.example", user_agent="pytest", ip_address="81.2.69.142")


def geo_record(country, city, region):
    return SimpleNamespace(
        country=SimpleNamespace(iso_code=country),
        city=SimpleNamespace(names={"en": city}),
        subdivisions=SimpleNamespace(most_specific=SimpleNamespace(names={"en": region})),
    )


def test_create_generated_code(db_session, user, url_service):
    url = url_service.create_short_url(db_session, user.id, "https://example.com/a")

    assert re.fullmatch(r"[A-Za-z0-9]{8}", url.short_code)
    assert not url.is_vanity
    assert url_service.short_url(url.short_code) == f"http://testserver/s/{url.short_code}"


def test_create_vanity_code(db_session, user, url_service):
    url = url_service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")

    assert url.short_code == "abcd"
    assert url.is_vanity


def test_vanity_conflict(db_session, user, other_user, url_service):
    url_service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")

    with pytest.raises(Conflict):
        url_service.create_short_url(db_session, other_user.id, "https://example.com/b", "abcd")


@pytest.mark.parametrize("vanity", ["ab", "good/bad", "x" * 31])
def test_invalid_vanity(db_session, user, url_service, vanity):
    with pytest.raises(InvalidInput):
        url_service.create_short_url(db_session, user.id, "https://example.com/a", vanity)


def test_invalid_url(db_session, user, url_service):
    with pytest.raises(InvalidInput):
        url_service.create_short_url(db_session, user.id, "javascript:alert(1)")


def test_expiry_must_be_in_future(db_session, user, url_service):
    with pytest.raises(InvalidInput):
        url_service.create_short_url(
            db_session, user.id, "https://example.com/a", expires_at=utcnow() - timedelta(minutes=1)
        )


def test_aware_expiry_is_stored_as_utc(db_session, user, url_service):
    expires = (utcnow() + timedelta(hours=1)).replace(tzinfo=timezone.utc)
    url = url_service.create_short_url(db_session, user.id, "https://example.com/a", expires_at=expires)
    assert url.expires_at == expires.replace(tzinfo=None)


def test_generated_code_collision_retries(db_session, user, url_service):
    url_service.create_short_url(db_session, user.id, "https://example.com/a", "taken123")
    codes = iter(["taken123", "taken123", "fresh123"])

    with patch.object(url_module, "generate_short_code", side_effect=lambda: next(codes)):
        url = url_service.create_short_url(db_session, user.id, "https://example.com/b")

    assert url.short_code == "fresh123"


def test_generated_code_collision_exhausted(db_session, user, url_service):
    url_service.create_short_url(db_session, user.id, "https://example.com/a", "taken123")

    with patch.object(url_module, "generate_short_code", return_value="taken123"):
        with pytest.raises(CollisionExhausted):
            url_service.create_short_url(db_session, user.id, "https://example.com/b")


def test_resolve_records_click(db_session, user, url_service):
    url = url_service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")

    assert url_service.resolve_short_url(db_session, "abcd", VISITOR) == "https://example.com/a"

    db_session.expire_all()
    click = db_session.query(ClickEvent).one()
    assert click.url_id == url.id
    assert click.referrer == "https://ref.example"
    assert click.ip_address == "81.2.69.142"
    assert click.country_code == "XX"
    assert url_catalog.get_by_id(db_session, url.id).access_count == 1


def test_resolve_with_geoip(db_session, user, recorder):
    reader = FakeGeoReader({"81.2.69.142": geo_record("GB", "London", "England")})
    service = URLService(GeoIPResolver(reader=reader), recorder, "http://testserver")
    service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")

    service.resolve_short_url(db_session, "abcd", VISITOR)

    click = db_session.query(ClickEvent).one()
    assert (click.country_code, click.city, click.region) == ("GB", "London", "England")


def test_resolve_unknown_and_expired_are_distinct(db_session, user, url_service):
    url = url_service.create_short_url(db_session, user.id, "https://example.com/a", "soon")
    url.expires_at = utcnow() - timedelta(seconds=1)
    url_catalog.update(db_session, url)

    with pytest.raises(Expired):
        url_service.resolve_short_url(db_session, "soon", VISITOR)
    with pytest.raises(NotFound):
        url_service.resolve_short_url(db_session, "never", VISITOR)


def test_resolve_deleted(db_session, user, url_service):
    url_service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")
    url_service.delete_url(db_session, user.id, "abcd")

    with pytest.raises(NotFound):
        url_service.resolve_short_url(db_session, "abcd", VISITOR)


def test_resolve_uses_cache(db_session, user, url_service):
    url = url_service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")
    cached = url_module.CachedURL(id=url.id, original_url="https://example.com/a", expires_at=None)

    with patch.object(url_module, "get_cached_url", return_value=cached), patch.object(
        url_module.url_catalog, "get_by_short_code"
    ) as lookup:
        assert url_service.resolve_short_url(db_session, "abcd", VISITOR) == "https://example.com/a"

    lookup.assert_not_called()


def test_click_failure_does_not_break_resolve(db_session, user, url_service):
    url = url_service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")

    with patch.object(url_catalog, "record_click", side_effect=CatalogError()):
        assert url_service.resolve_short_url(db_session, "abcd", VISITOR) == "https://example.com/a"

    db_session.expire_all()
    assert db_session.query(ClickEvent).count() == 0
    assert url_catalog.get_by_id(db_session, url.id).access_count == 1


def test_click_steps_after_deadline_are_skipped(db_session, user):
    recorder = ClickRecorder(TestingSessionLocal, executor=InlineExecutor(), timeout=-1)
    service = URLService(GeoIPResolver(), recorder, "http://testserver")
    url = service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")

    service.resolve_short_url(db_session, "abcd", VISITOR)

    db_session.expire_all()
    assert db_session.query(ClickEvent).count() == 0
    assert url_catalog.get_by_id(db_session, url.id).access_count == 0


def test_recorder_after_shutdown_drops_clicks(db_session, user):
    recorder = ClickRecorder(TestingSessionLocal, max_workers=1)
    recorder.shutdown()

    assert recorder.record(user.id, VISITOR) is None


def test_analytics_owner_only(db_session, user, other_user, url_service):
    url = url_service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")
    url_service.resolve_short_url(db_session, "abcd", VISITOR)

    row, analytics = url_service.analytics_for(db_session, user.id, url.id)
    assert row.id == url.id
    assert (analytics.total_clicks, analytics.unique_clicks) == (1, 1)

    with pytest.raises(Forbidden):
        url_service.analytics_for(db_session, other_user.id, url.id)


def test_delete_by_id_or_code(db_session, user, other_user, url_service):
    first = url_service.create_short_url(db_session, user.id, "https://example.com/a", "first")
    url_service.create_short_url(db_session, user.id, "https://example.com/b", "second")

    with pytest.raises(Forbidden):
        url_service.delete_url(db_session, other_user.id, "second")

    url_service.delete_url(db_session, user.id, str(first.id))
    url_service.delete_url(db_session, user.id, "second")

    assert url_service.list_user_urls(db_session, user.id) == []
    with pytest.raises(NotFound):
        url_service.delete_url(db_session, user.id, "second")


def test_update_expiration(db_session, user, other_user, url_service):
    url = url_service.create_short_url(db_session, user.id, "https://example.com/a", "abcd")
    expires = utcnow() + timedelta(days=1)

    assert url_service.update_expiration(db_session, user.id, url.id, expires).expires_at == expires
    assert url_service.update_expiration(db_session, user.id, url.id, None).expires_at is None
    with pytest.raises(InvalidInput):
        url_service.update_expiration(db_session, user.id, url.id, utcnow() - timedelta(hours=1))
    with pytest.raises(Forbidden):
        url_service.update_expiration(db_session, other_user.id, url.id, expires)


def test_list_user_urls_newest_first(db_session, user, url_service):
    first = url_service.create_short_url(db_session, user.id, "https://example.com/a", "first")
    first.created_at = utcnow() - timedelta(minutes=5)
    url_catalog.update(db_session, first)
    url_service.create_short_url(db_session, user.id, "https://example.com/b", "second")

    assert [u.short_code for u in url_service.list_user_urls(db_session, user.id)] == ["second", "first"]
