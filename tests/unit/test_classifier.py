"""Unit tests for the content classifier."""

import pytest
from pydantic import ValidationError

from fetchpage.fetch.classifier import (
    CheckContext,
    ClassifierPolicy,
    ContentClassifier,
    strip_markup,
)
from fetchpage.fetch.models import FetchOutcome, FetchStrategy


def article(paragraphs: int = 10) -> str:
    body = "".join(
        f"<p>Section {i} describes the release process for the widget service in detail.</p>"
        for i in range(paragraphs)
    )
    return f"<html><body><h1>Release Notes</h1>{body}</body></html>"


class TestLoginDetection:
    """Tests for the needs_login judgment."""

    def test_phrase_with_password_form(self):
        """A login phrase next to a password form is a login wall."""
        verdict = ContentClassifier().classify(
            '<p>Please sign in</p><form><input type="password"></form>'
        )

        assert verdict.needs_login is True
        assert verdict.has_password_field is True
        assert verdict.quality_ok is False
        assert "password" in verdict.reason

    def test_two_phrases_on_long_page(self):
        content = article(40) + "<p>Session expired. Please log in again.</p>"

        verdict = ContentClassifier().classify(content)

        assert verdict.login_keyword_count == 2
        assert verdict.needs_login is True

    def test_chinese_phrases(self):
        verdict = ContentClassifier().classify(article(40) + "<p>请先登录</p><p>登录已过期</p>")
        assert verdict.needs_login is True

    def test_single_phrase_on_long_page_is_not_login(self):
        verdict = ContentClassifier().classify(article(40) + "<p>Access denied for guests.</p>")

        assert verdict.login_keyword_count == 1
        assert verdict.needs_login is False

    def test_short_content_floor_depends_on_context(self):
        """One phrase fires below the floor; the floors differ by call path."""
        content = "<div>" + "x" * 400 + "<p>Login required</p></div>"
        classifier = ContentClassifier()

        direct = classifier.classify(content, context=CheckContext.DIRECT)
        orchestrated = classifier.classify(content, context=CheckContext.ORCHESTRATED)

        assert direct.needs_login is False
        assert orchestrated.needs_login is True

    def test_password_without_form_is_ignored(self):
        verdict = ContentClassifier().classify(article() + '<input type="password">')
        assert verdict.has_password_field is False

    @pytest.mark.parametrize("location", [
        "https://example.com/login?next=/a",
        "https://sso.example.com/start",
        "/auth/redirect",
        "/signin",
    ])
    def test_redirect_to_login(self, location):
        verdict = ContentClassifier().classify(
            "", status_code=302, headers={'Location': location}
        )
        assert verdict.needs_login is True

    def test_redirect_elsewhere_is_not_login(self):
        verdict = ContentClassifier().classify(
            "", status_code=301, headers={'location': 'https://example.com/new-home'}
        )
        assert verdict.needs_login is False

    def test_unauthorized_status(self):
        verdict = ContentClassifier().classify(article(), status_code=401)

        assert verdict.needs_login is True
        assert "401" in verdict.reason


class TestQuality:
    """Tests for the quality_ok judgment."""

    def test_structured_article_is_good(self):
        verdict = ContentClassifier().classify(article())

        assert verdict.needs_login is False
        assert verdict.quality_ok is True
        assert verdict.text_length > 500

    def test_short_content_is_poor(self):
        verdict = ContentClassifier().classify("<div><p>Loading...</p></div>")
        assert verdict.quality_ok is False

    def test_unstructured_text_is_poor(self):
        verdict = ContentClassifier().classify("plain words " * 100)
        assert verdict.quality_ok is False

    def test_error_page_is_poor(self):
        content = article() + "<p>Error 404: the page you wanted was not found.</p>"
        verdict = ContentClassifier().classify(content)

        assert verdict.quality_ok is False
        assert "error page: True" in verdict.reason

    def test_error_keyword_inside_script_is_ignored(self):
        content = article() + "<script>if (status === 404) { showNotFound(); }</script>"
        verdict = ContentClassifier().classify(content)
        assert verdict.quality_ok is True

    def test_classify_outcome_uses_status_and_headers(self):
        outcome = FetchOutcome(
            strategy_used=FetchStrategy.HTTP,
            status_code=302,
            headers={'Location': '/login'},
        )
        assert ContentClassifier().classify_outcome(outcome).needs_login is True


class TestPolicy:
    """Tests for ClassifierPolicy."""

    def test_defaults(self):
        policy = ClassifierPolicy()

        assert policy.login_phrase_threshold == 2
        assert policy.short_content_floor(CheckContext.DIRECT) == 200
        assert policy.short_content_floor(CheckContext.ORCHESTRATED) == 2000
        assert policy.min_quality_text_length == 500
        assert policy.browser_preference_ratio == 1.2
        assert len(policy.login_phrases) == 12

    def test_terms_are_lowercased(self):
        policy = ClassifierPolicy(login_phrases=['Members Only'])
        assert ContentClassifier(policy).count_login_phrases("MEMBERS ONLY area") == 1

    def test_ratio_below_one_rejected(self):
        with pytest.raises(ValidationError):
            ClassifierPolicy(browser_preference_ratio=0.5)

    def test_custom_threshold(self):
        policy = ClassifierPolicy(min_quality_text_length=50)
        verdict = ContentClassifier(policy).classify("<p>" + "word " * 20 + "</p>")
        assert verdict.quality_ok is True


class TestStripMarkup:

    def test_removes_tags_scripts_and_styles(self):
        html = "<style>p{}</style><p>Hello <b>there</b></p><script>var x = 1;</script>"
        assert strip_markup(html) == "Hello there"
