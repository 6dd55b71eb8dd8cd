"""Unit tests for fetch models and artifact naming."""

from datetime import datetime, timedelta, timezone

import pytest

from fetchpage.fetch.artifacts import ArtifactWriter, artifact_filename
from fetchpage.fetch.models import (
    CapturedSession,
    CookieJar,
    CookieRecord,
    FetchOutcome,
    FetchStrategy,
    ResultDocument,
    ResultStatus,
)


class TestCookieRecord:
    """Tests for CookieRecord."""

    def test_from_capture_dict(self):
        """Test parsing the browser extension's cookie shape."""
        record = CookieRecord.from_capture_dict({
            'name': 'sid',
            'value': 'abc',
            'domain': '.example.com',
            'httpOnly': True,
            'sameSite': 'no_restriction',
            'expirationDate': 1893456000.5,
        })

        assert record.http_only is True
        assert record.same_site == 'no_restriction'
        assert record.expires_at == datetime.fromtimestamp(1893456000.5, tz=timezone.utc)
        assert record.is_session is False

    def test_missing_domain_uses_default(self):
        record = CookieRecord.from_capture_dict({'name': 'a'}, default_domain='example.com')
        assert record.domain == 'example.com'
        assert record.path == '/'

    def test_far_future_expiration_is_clamped(self):
        record = CookieRecord.from_capture_dict({'name': 'a', 'domain': 'example.com', 'expirationDate': 1e20})
        assert record.expires_at.year == 9999
        assert record.is_expired() is False

    @pytest.mark.parametrize("expires", ["not-a-date", {"seconds": 1}, True, float("nan")])
    def test_malformed_expiration_rejected(self, expires):
        with pytest.raises(ValueError, match="Invalid expiration"):
            CookieRecord.from_capture_dict({'name': 'a', 'domain': 'example.com', 'expirationDate': expires})

    @pytest.mark.parametrize("entry", [{'value': 'x'}, ['name', 'value'], {'name': ''}])
    def test_invalid_entries(self, entry):
        with pytest.raises(ValueError):
            CookieRecord.from_capture_dict(entry)

    @pytest.mark.parametrize("url,expected", [
        ("https://example.com/", True),
        ("https://www.example.com/app/page", True),
        ("https://notexample.com/", False),
        ("https://example.org/", False),
    ])
    def test_matches_url_domain(self, url, expected):
        record = CookieRecord(name='a', value='1', domain='.example.com')
        assert record.matches_url(url) is expected

    def test_matches_url_path_and_secure(self):
        record = CookieRecord(name='a', value='1', domain='example.com', path='/app', secure=True)

        assert record.matches_url("https://example.com/app/settings") is True
        assert record.matches_url("https://example.com/other") is False
        assert record.matches_url("http://example.com/app") is False

    @pytest.mark.parametrize("cookie_path,url_path,expected", [
        ("/foo", "/foo", True),
        ("/foo", "/foo/bar", True),
        ("/foo", "/foobar", False),
        ("/foo/", "/foo/bar", True),
        ("/foo/", "/foo", False),
        ("/", "/anything", True),
    ])
    def test_matches_url_path_boundary(self, cookie_path, url_path, expected):
        record = CookieRecord(name='a', value='1', domain='example.com', path=cookie_path)
        assert record.matches_url(f"https://example.com{url_path}") is expected

    def test_playwright_cookie_shape(self):
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        record = CookieRecord(
            name='sid', value='abc', domain='.example.com',
            http_only=True, same_site='no_restriction', expires_at=expires
        )

        cookie = record.to_playwright_cookie()

        assert cookie['httpOnly'] is True
        # SameSite=None is downgraded without Secure
        assert cookie['sameSite'] == 'Lax'
        assert cookie['expires'] == expires.timestamp()

    def test_session_cookie_has_no_expires(self):
        cookie = CookieRecord(name='a', value='1', domain='example.com', same_site='strict').to_playwright_cookie()

        assert 'expires' not in cookie
        assert cookie['sameSite'] == 'Strict'

    def test_naive_expiry_treated_as_utc(self):
        record = CookieRecord(name='a', value='1', domain='example.com', expires_at=datetime(2000, 1, 1))
        assert record.expires_at.tzinfo is not None
        assert record.is_expired() is True


class TestCapturedSession:
    """Tests for CapturedSession parsing."""

    def test_domain_from_url(self):
        session = CapturedSession.from_capture_dict({'url': 'https://news.example.com/x', 'cookies': []})
        assert session.domain == 'news.example.com'

    def test_non_string_storage_values_are_serialized(self):
        session = CapturedSession.from_capture_dict({
            'domain': 'example.com',
            'localStorage': {'prefs': {'dark': True}, 'count': 3},
        })

        assert session.local_storage == {'prefs': '{"dark": true}', 'count': '3'}

    @pytest.mark.parametrize("data", [
        {'cookies': []},
        {'domain': 'example.com', 'cookies': {'a': 1}},
        {'domain': 'example.com', 'localStorage': ['x']},
        'not an object',
    ])
    def test_malformed_capture(self, data):
        with pytest.raises(ValueError):
            CapturedSession.from_capture_dict(data)

    def test_capture_dict_keeps_extension_field_names(self):
        session = CapturedSession(
            domain='example.com',
            cookies=[CookieRecord(name='a', value='1', domain='example.com', http_only=True)],
            local_storage={'k': 'v'},
        )

        data = session.to_capture_dict()

        assert data['cookies'][0]['httpOnly'] is True
        assert data['localStorage'] == {'k': 'v'}
        assert 'timestamp' in data


class TestCookieJar:
    """Tests for CookieJar lookups."""

    def test_cookie_header_excludes_expired_and_foreign(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        records = [
            CookieRecord(name='a', value='1', domain='.example.com'),
            CookieRecord(name='b', value='2', domain='.example.com', expires_at=now - timedelta(seconds=1)),
            CookieRecord(name='c', value='3', domain='other.com'),
        ]
        jar = CookieJar(cookies={r.key: r for r in records})

        assert jar.cookie_header("https://example.com/", now=now) == 'a=1'
        assert jar.expired_cookie_names(now=now) == ['b']

    def test_is_empty(self):
        assert CookieJar().is_empty() is True
        assert CookieJar(local_storage={'example.com': {}}).is_empty() is True
        assert CookieJar(local_storage={'example.com': {'k': 'v'}}).is_empty() is False


class TestOutcomeAndResult:
    """Tests for FetchOutcome and ResultDocument."""

    def test_location_header_lookup_is_case_insensitive(self):
        outcome = FetchOutcome(strategy_used=FetchStrategy.HTTP, headers={'location': '/login'})
        assert outcome.location == '/login'

    def test_render_without_notes(self):
        document = ResultDocument(title="Page", markdown_body="Body text", source_url="https://example.com")
        assert document.render() == "Title: Page\n\nBody text"

    def test_render_with_notes(self):
        document = ResultDocument(
            title="Page",
            markdown_body="Body",
            source_url="https://example.com",
            notes=["first", "second"],
        )
        assert document.render() == "Title: Page\n\nBody\n\nNotes:\n- first\n- second"

    def test_result_is_immutable(self):
        document = ResultDocument(title="Page", markdown_body="Body", source_url="https://example.com")
        with pytest.raises(Exception):
            document.title = "Changed"

    def test_is_error(self):
        assert ResultDocument(
            title="t", markdown_body="b", source_url="u", status=ResultStatus.LOGIN_REQUIRED
        ).is_error is True


class TestArtifacts:
    """Tests for artifact naming and writing."""

    def _document(self, url, status=ResultStatus.DONE):
        return ResultDocument(
            title="Page",
            markdown_body="Body",
            source_url=url,
            status=status,
            created_at=datetime(2024, 3, 9, 23, 30, tzinfo=timezone.utc),
        )

    def test_filename(self):
        document = self._document("https://www.example.com/blog/post-1?ref=x")
        assert artifact_filename(document) == "www.example.com_blog_post-1_2024-03-09.md"

    def test_error_suffix(self):
        document = self._document("https://example.com/a", status=ResultStatus.ERROR)
        assert artifact_filename(document) == "example.com_a_2024-03-09_ERROR.md"

    def test_unparseable_host(self):
        assert artifact_filename(self._document("not a url")).startswith("unknown")

    def test_bad_ipv6_host(self):
        document = self._document("http://[invalid/page", status=ResultStatus.ERROR)
        assert artifact_filename(document) == "unknown_2024-03-09_ERROR.md"

    def test_writer_creates_directory(self, tmp_path):
        writer = ArtifactWriter(tmp_path / "nested" / "pages")

        path = writer.write(self._document("https://example.com/"))

        assert path.exists()
        assert path.read_text(encoding='utf-8') == "Title: Page\n\nBody"

    def test_writer_failure_returns_none(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")

        assert ArtifactWriter(blocker).write(self._document("https://example.com/")) is None
