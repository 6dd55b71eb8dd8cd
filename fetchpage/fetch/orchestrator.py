"""Retrieval decision engine.

The orchestrator turns one URL into one ResultDocument. It loads captured
credentials, picks a strategy (forced, selector-routed or the plain-first
decision tree), runs at most one plain fetch and one browser render, judges
each with the content classifier and converts the chosen markup to Markdown.

Decision tree::

    HTTP_ATTEMPT --needs login--> LOGIN_REQUIRED
                 --quality ok---> DONE(http)
                 --poor--------> BROWSER_ATTEMPT --needs login--> LOGIN_REQUIRED
                                                 --better------> DONE(browser)
                                                 --otherwise---> DONE(http)
    HTTP raised   -> BROWSER_ATTEMPT as the only attempt
    both raised   -> ERROR
"""

import logging
import time
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse

from .artifacts import ArtifactWriter
from .capture.browser_client import BrowserClient, PlaywrightBrowserClient, browser_session
from .capture.http_client import HttpFetchClient
from .classifier import CheckContext, ContentClassifier, strip_markup
from .config import FetchConfig, FetchConfigManager
from .cookies.jar import CookieJarManager
from .cookies.store import FileCredentialStore
from .domain_selectors import DomainSelectorTable
from .errors import FetchPageError
from .markdown import MarkdownTransformer
from .models import (
    CapturedSession,
    CookieJar,
    FetchOutcome,
    FetchStrategy,
    ResultDocument,
    ResultStatus,
)
from .progress import ProgressMilestone, ProgressReporter, ProgressSink

logger = logging.getLogger(__name__)


FORCE_METHOD_ALIASES = {
    'http': FetchStrategy.HTTP,
    'browser': FetchStrategy.BROWSER,
    'spa': FetchStrategy.BROWSER,
}


def resolve_force_method(force_method: Optional[str]) -> Optional[FetchStrategy]:
    """Map a caller's force_method onto a strategy.

    Raises:
        ValueError: For an unsupported method name
    """
    if force_method is None or force_method == '':
        return None
    if isinstance(force_method, FetchStrategy):
        return force_method
    strategy = FORCE_METHOD_ALIASES.get(str(force_method).strip().lower())
    if strategy is None:
        raise ValueError(
            f"Unsupported force_method {force_method!r}; expected one of {sorted(FORCE_METHOD_ALIASES)}"
        )
    return strategy


def validate_url(url: str) -> Optional[str]:
    """Return a problem description for an unusable URL, or None."""
    if not url or not isinstance(url, str):
        return "URL is empty"
    try:
        parsed = urlparse(url.strip())
    except ValueError as e:
        return f"URL cannot be parsed: {e}"
    if parsed.scheme not in ('http', 'https'):
        return f"URL scheme must be http or https, got {parsed.scheme or 'none'!r}"
    if not parsed.hostname:
        return "URL has no host"
    return None


class FetchOrchestrator:
    """Runs one fetch invocation end to end."""

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        http_client: Optional[HttpFetchClient] = None,
        browser_client_factory: Optional[Callable[[], BrowserClient]] = None,
        classifier: Optional[ContentClassifier] = None,
        transformer: Optional[MarkdownTransformer] = None,
        jar_manager: Optional[CookieJarManager] = None,
        selector_table: Optional[DomainSelectorTable] = None,
        artifact_writer: Optional[ArtifactWriter] = None
    ):
        """Initialize orchestrator.

        Every collaborator defaults to the implementation built from ``config``.

        Args:
            config: Fetch configuration (defaults used if None)
            http_client: Plain fetch client
            browser_client_factory: Callable returning a fresh BrowserClient per attempt
            classifier: Content classifier
            transformer: Markdown transformer
            jar_manager: Credential loader
            selector_table: Domain to selector routing table
            artifact_writer: Writer for persisted Markdown artifacts
        """
        self.config = config or FetchConfig()

        self.http_client = http_client or HttpFetchClient(
            timeout_s=self.config.http.timeout_s,
            user_agent=self.config.http.user_agent,
            extra_headers=self.config.http.extra_headers,
        )
        self.browser_client_factory = browser_client_factory or self._default_browser_client
        self.classifier = classifier or ContentClassifier(self.config.classifier)
        self.transformer = transformer or MarkdownTransformer()
        self.jar_manager = jar_manager or CookieJarManager(FileCredentialStore(self.config.store.cookie_dir))
        self.selector_table = selector_table or DomainSelectorTable(self.config.domain_selectors)
        self.artifact_writer = artifact_writer or ArtifactWriter(self.config.store.pages_dir)

    def _default_browser_client(self) -> BrowserClient:
        return PlaywrightBrowserClient(
            self.config.browser.to_browser_config(),
            scroll_steps=self.config.browser.scroll_steps,
        )

    async def run(
        self,
        url: str,
        wait_for: Optional[str] = None,
        headless: Optional[bool] = None,
        force_method: Optional[str] = None,
        timeout: Optional[int] = None,
        skip_cookies: bool = False,
        progress: Optional[ProgressReporter] = None,
        save_artifact: Optional[bool] = None
    ) -> ResultDocument:
        """Fetch one URL.

        Args:
            url: Page to fetch
            wait_for: CSS selector to wait for and scope extraction to (routes to the browser)
            headless: Browser headless mode (config default if None)
            force_method: ``http``, ``browser`` or ``spa`` to bypass the decision tree
            timeout: Navigation and wait timeout in milliseconds
            skip_cookies: Fetch without loading any captured credentials
            progress: Milestone reporter
            save_artifact: Override the configured artifact saving

        Returns:
            ResultDocument; never raises
        """
        reporter = progress or ProgressReporter()
        await reporter.report(ProgressMilestone.STARTED, f"Fetching {url}")

        try:
            document = await self._run(
                url=url.strip() if isinstance(url, str) else url,
                wait_for=wait_for.strip() if wait_for and wait_for.strip() else None,
                headless=self.config.browser.headless if headless is None else headless,
                force_method=force_method,
                timeout_ms=timeout or self.config.browser.navigation_timeout_ms,
                skip_cookies=skip_cookies,
                reporter=reporter,
            )
        except Exception as e:
            logger.error(f"Unexpected failure fetching {url}: {e}", exc_info=True)
            document = self._error_document(str(url), f"Unexpected error: {e}")

        should_save = self.config.store.save_artifacts if save_artifact is None else save_artifact
        if should_save:
            self.artifact_writer.write(document)

        await reporter.report(ProgressMilestone.DONE, f"Finished: {document.status.value}")
        logger.info(
            f"Fetched {url}: status={document.status.value} "
            f"strategy={document.strategy_used.value if document.strategy_used else 'none'}"
        )
        return document

    async def _run(
        self,
        url: str,
        wait_for: Optional[str],
        headless: bool,
        force_method: Optional[str],
        timeout_ms: int,
        skip_cookies: bool,
        reporter: ProgressReporter
    ) -> ResultDocument:
        problem = validate_url(url)
        if problem:
            logger.warning(f"Rejected URL {url!r}: {problem}")
            return self._error_document(str(url), f"Invalid URL: {problem}")

        try:
            forced = resolve_force_method(force_method)
        except ValueError as e:
            return self._error_document(url, str(e))

        jar = None if skip_cookies else self._load_credentials(url)
        notes = self._expiry_notes(jar, url)

        if forced == FetchStrategy.HTTP:
            await reporter.report(ProgressMilestone.STRATEGY_SELECTED, "Using HTTP (forced)")
            return await self._forced_http(url, jar, notes, reporter)

        selector = wait_for or self.selector_table.lookup(url)

        if forced == FetchStrategy.BROWSER or selector:
            if forced == FetchStrategy.BROWSER:
                reason = "forced"
            elif wait_for:
                reason = "caller selector"
            else:
                reason = "domain selector"
            await reporter.report(ProgressMilestone.STRATEGY_SELECTED, f"Using browser rendering ({reason})")
            return await self._single_browser(url, jar, selector, headless, timeout_ms, notes, reporter)

        await reporter.report(ProgressMilestone.STRATEGY_SELECTED, "Using HTTP, browser fallback enabled")
        return await self._decision_tree(url, jar, headless, timeout_ms, notes, reporter)

    # Strategies

    async def _forced_http(
        self,
        url: str,
        jar: Optional[CookieJar],
        notes: List[str],
        reporter: ProgressReporter
    ) -> ResultDocument:
        try:
            outcome, sent_credentials = await self._http_attempt(url, jar)
        except FetchPageError as e:
            logger.error(f"HTTP attempt failed: {e}")
            return self._error_document(url, f"HTTP request failed: {e}")
        await reporter.report(ProgressMilestone.HTTP_ATTEMPT_COMPLETED, f"HTTP status {outcome.status_code}")

        if sent_credentials:
            verdict = self.classifier.classify_outcome(outcome, CheckContext.DIRECT)
            if verdict.needs_login:
                return self._login_document(url, outcome, verdict.reason, jar)

        return self._done_document(url, outcome, self.transformer.from_html(outcome.raw_html), notes)

    async def _single_browser(
        self,
        url: str,
        jar: Optional[CookieJar],
        selector: Optional[str],
        headless: bool,
        timeout_ms: int,
        notes: List[str],
        reporter: ProgressReporter
    ) -> ResultDocument:
        try:
            outcome = await self._browser_attempt(url, jar, selector, headless, timeout_ms, reporter)
        except Exception as e:
            logger.error(f"Browser attempt failed: {e}")
            return self._error_document(url, f"Browser rendering failed: {e}")

        markdown = self.transformer.from_document(outcome.raw_html, selector)
        return self._done_document(url, outcome, markdown, notes)

    async def _decision_tree(
        self,
        url: str,
        jar: Optional[CookieJar],
        headless: bool,
        timeout_ms: int,
        notes: List[str],
        reporter: ProgressReporter
    ) -> ResultDocument:
        try:
            http_outcome, _ = await self._http_attempt(url, jar)
        except FetchPageError as http_error:
            logger.warning(f"HTTP attempt failed, trying browser rendering: {http_error}")
            return await self._browser_rescue(url, jar, headless, timeout_ms, notes, reporter, http_error)

        verdict = self.classifier.classify_outcome(http_outcome, CheckContext.ORCHESTRATED)
        await reporter.report(ProgressMilestone.HTTP_ATTEMPT_COMPLETED, verdict.reason)

        if verdict.needs_login:
            return self._login_document(url, http_outcome, verdict.reason, jar)

        http_markdown = self.transformer.from_html(http_outcome.raw_html)
        if verdict.quality_ok:
            logger.info(f"HTTP content accepted for {url}")
            return self._done_document(url, http_outcome, http_markdown, notes)

        logger.info(f"HTTP content insufficient for {url} ({verdict.reason}), rendering in browser")
        try:
            browser_outcome = await self._browser_attempt(url, jar, None, headless, timeout_ms, reporter)
        except Exception as e:
            logger.warning(f"Browser attempt failed, keeping HTTP content: {e}")
            fallback_notes = notes + [f"Browser rendering failed ({e}); returning plain HTTP content."]
            return self._done_document(url, http_outcome, http_markdown, fallback_notes)

        browser_verdict = self.classifier.classify_outcome(browser_outcome, CheckContext.ORCHESTRATED)
        await reporter.report(ProgressMilestone.BROWSER_ATTEMPT_COMPLETED, browser_verdict.reason)

        if browser_verdict.needs_login:
            return self._login_document(url, browser_outcome, browser_verdict.reason, jar)

        browser_markdown = self.transformer.from_document(browser_outcome.raw_html)
        ratio = self.classifier.policy.browser_preference_ratio

        if browser_verdict.quality_ok or len(browser_markdown) > len(http_markdown) * ratio:
            logger.info(f"Browser content preferred for {url}")
            return self._done_document(url, browser_outcome, browser_markdown, notes)

        logger.info(f"HTTP content kept for {url}")
        return self._done_document(url, http_outcome, http_markdown, notes)

    async def _browser_rescue(
        self,
        url: str,
        jar: Optional[CookieJar],
        headless: bool,
        timeout_ms: int,
        notes: List[str],
        reporter: ProgressReporter,
        http_error: Exception
    ) -> ResultDocument:
        try:
            outcome = await self._browser_attempt(url, jar, None, headless, timeout_ms, reporter)
        except Exception as browser_error:
            logger.error(f"Both attempts failed for {url}")
            return self._both_failed_document(url, http_error, browser_error)

        await reporter.report(ProgressMilestone.BROWSER_ATTEMPT_COMPLETED, "Browser rescue completed")
        return self._done_document(url, outcome, self.transformer.from_document(outcome.raw_html), notes)

    # Attempts

    async def _http_attempt(self, url: str, jar: Optional[CookieJar]) -> Tuple[FetchOutcome, bool]:
        """Run the plain fetch. Returns the outcome and whether credentials were sent."""
        headers = {}
        cookie_header = jar.cookie_header(url) if jar else ''
        if cookie_header:
            headers['Cookie'] = cookie_header

        logger.debug(f"HTTP attempt: {url} (cookies: {'yes' if cookie_header else 'no'})")
        response = await self.http_client.fetch(url, headers=headers)

        outcome = FetchOutcome(
            strategy_used=FetchStrategy.HTTP,
            status_code=response.status_code,
            raw_html=response.body,
            title=self.transformer.extract_title(response.body),
            elapsed_ms=response.elapsed_ms,
            headers=response.headers,
            final_url=response.url,
        )
        return outcome, bool(cookie_header)

    async def _browser_attempt(
        self,
        url: str,
        jar: Optional[CookieJar],
        selector: Optional[str],
        headless: bool,
        timeout_ms: int,
        reporter: ProgressReporter
    ) -> FetchOutcome:
        """Render the page in a fresh browser session, released on every path."""
        start = time.monotonic()
        client = self.browser_client_factory()

        async with browser_session(client, headless) as browser:
            if jar:
                await browser.set_cookies([c for c in jar.records if not c.is_expired()])
                await browser.set_local_storage(jar.local_storage)

            await reporter.report(ProgressMilestone.NAVIGATION_STARTED, f"Navigating to {url}")
            status = await browser.navigate(url, self.config.browser.wait_policy, timeout_ms)

            await browser.wait_for_ready_state(min(timeout_ms, self.config.browser.ready_state_timeout_ms))
            if selector:
                await browser.wait_for_selector(selector, timeout_ms)
            await browser.scroll()

            document = await browser.extract_document(selector)

        return FetchOutcome(
            strategy_used=FetchStrategy.BROWSER,
            status_code=status,
            raw_html=document.html,
            title=document.title,
            elapsed_ms=(time.monotonic() - start) * 1000,
            final_url=document.final_url or url,
            selector=selector,
        )

    # Credentials

    def _load_credentials(self, url: str) -> Optional[CookieJar]:
        try:
            return self.jar_manager.load_for_url(url, merge_all=self.config.merge_all_captures)
        except OSError as e:
            logger.warning(f"Cannot read credential store, continuing without cookies: {e}")
            return None

    def _expiry_notes(self, jar: Optional[CookieJar], url: str) -> List[str]:
        if not jar:
            return []

        host = urlparse(url).hostname or ''
        relevant = CapturedSession(
            domain=host,
            cookies=[c for c in jar.records if c.matches_url(url)],
        )
        check = self.jar_manager.is_expired(relevant)
        if not check.expired:
            return []

        names = ', '.join(sorted(set(check.cookie_names)))
        return [
            f"Expired cookies for {host}: {names}. "
            f"Re-export cookies with the browser extension into {self.config.store.cookie_dir}."
        ]

    # Result documents

    def _done_document(
        self,
        url: str,
        outcome: FetchOutcome,
        markdown: str,
        notes: List[str]
    ) -> ResultDocument:
        return ResultDocument(
            title=outcome.title or url,
            markdown_body=markdown,
            source_url=url,
            strategy_used=outcome.strategy_used,
            status=ResultStatus.DONE,
            notes=list(notes),
        )

    def _login_document(
        self,
        url: str,
        outcome: FetchOutcome,
        reason: str,
        jar: Optional[CookieJar]
    ) -> ResultDocument:
        logger.warning(f"Login wall detected for {url}: {reason}")
        cookie_dir = self.config.store.cookie_dir

        lines = [
            f"The page requires login: {url}",
            "",
            f"Detection: {reason}",
            "",
            "Suggested steps:",
            "1. Open the page in your browser and sign in",
            "2. Export the site's cookies with the browser extension",
            f"3. Save the exported file into {cookie_dir}",
            "4. Run the fetch again; saved cookies are loaded automatically",
        ]

        expired = jar.expired_cookie_names() if jar else []
        if expired:
            lines += ["", f"Expired cookies in the store: {', '.join(expired)}"]

        excerpt = strip_markup(outcome.raw_html)
        limit = self.config.login_excerpt_chars
        if len(excerpt) > limit:
            excerpt = excerpt[:limit] + '...'
        if excerpt:
            lines += ["", "Page content (for review):", excerpt]

        return ResultDocument(
            title="Login required",
            markdown_body="\n".join(lines),
            source_url=url,
            strategy_used=outcome.strategy_used,
            status=ResultStatus.LOGIN_REQUIRED,
        )

    def _error_document(self, url: str, message: str) -> ResultDocument:
        return ResultDocument(
            title="Fetch failed",
            markdown_body=message,
            source_url=url,
            status=ResultStatus.ERROR,
        )

    def _both_failed_document(self, url: str, http_error: Exception, browser_error: Exception) -> ResultDocument:
        lines = [
            f"Failed to fetch {url}",
            "",
            f"HTTP attempt error: {http_error}",
            f"Browser attempt error: {browser_error}",
            "",
            "Suggestions:",
            "1. Check that the URL is correct",
            "2. Check the network connection",
            f"3. If the page requires login, export its cookies into {self.config.store.cookie_dir}",
        ]
        return self._error_document(url, "\n".join(lines))


async def fetchpage(
    url: str,
    wait_for: Optional[str] = None,
    headless: Optional[bool] = None,
    force_method: Optional[str] = None,
    timeout: Optional[int] = None,
    skip_cookies: bool = False,
    progress_token=None,
    progress_sink: Optional[ProgressSink] = None,
    config: Optional[FetchConfig] = None,
    save_artifact: Optional[bool] = None
) -> str:
    """Fetch a page and return its rendered text artifact.

    Args:
        url: Page to fetch
        wait_for: CSS selector to wait for and extract
        headless: Browser headless mode
        force_method: ``http``, ``browser`` or ``spa``
        timeout: Navigation timeout in milliseconds
        skip_cookies: Do not load captured credentials
        progress_token: Opaque token echoed to the progress sink
        progress_sink: ``(token, progress, total, message)`` callable, sync or async
        config: Configuration (loaded from file/environment if None)
        save_artifact: Override the configured artifact saving

    Returns:
        ``Title: ...`` header followed by Markdown or diagnostic text
    """
    if config is None:
        try:
            config = FetchConfigManager().config
        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            return ResultDocument(
                title="Fetch failed",
                markdown_body=f"Configuration error: {e}",
                source_url=str(url),
                status=ResultStatus.ERROR,
            ).render()

    orchestrator = FetchOrchestrator(config)
    document = await orchestrator.run(
        url,
        wait_for=wait_for,
        headless=headless,
        force_method=force_method,
        timeout=timeout,
        skip_cookies=skip_cookies,
        progress=ProgressReporter(progress_token, progress_sink),
        save_artifact=save_artifact,
    )
    return document.render()
