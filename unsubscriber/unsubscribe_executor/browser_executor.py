"""
Browser Unsubscribe Executor

Drives a headless Chromium page through an unsubscribe flow:

1. validate the URL and navigate
2. stop early on CAPTCHA or login walls
3. accept a page that already reports success
4. otherwise answer any "reason" question and click an unsubscribe control
5. classify the resulting page as success, error or uncertain

One browser process is shared across attempts; every attempt gets its own
context so cookies and storage never leak between senders. Screenshots and
a Playwright trace are kept for audit.
"""

import threading
from pathlib import Path
from typing import Callable, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from ..config import Config
from ..email_processor.unsubscribe.constants import METHOD_BROWSER
from ..email_processor.unsubscribe.validators import validate_unsubscribe_url
from ..exceptions import StorageUploadError
from . import browser_heuristics as heuristics
from .base_executor import ExecutionResult, UnsubscribeStrategy, UnsubscribeTarget

USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'
VIEWPORT = {'width': 1280, 'height': 720}
SETTLE_AFTER_LOAD_MS = 1000
SETTLE_AFTER_CLICK_MS = 2000
SETTLE_AFTER_REASON_MS = 500
CLICK_TIMEOUT_MS = 5000


class BrowserManager:
    """Lazily started browser shared by all browser attempts."""

    def __init__(self, ws_endpoint: Optional[str] = None, headless: Optional[bool] = None,
                 playwright_factory: Callable = sync_playwright):
        self.ws_endpoint = ws_endpoint if ws_endpoint is not None else Config.PLAYWRIGHT_WS_ENDPOINT
        self.headless = headless if headless is not None else Config.BROWSER_HEADLESS
        self.playwright_factory = playwright_factory
        self._playwright = None
        self._browser = None
        self._lock = threading.Lock()

    def get_browser(self):
        """Connect to the remote browser server, or launch Chromium locally."""
        with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._playwright is None:
                self._playwright = self.playwright_factory().start()

            if self.ws_endpoint:
                self._browser = self._playwright.chromium.connect(self.ws_endpoint)
            else:
                self._browser = self._playwright.chromium.launch(
                    headless=self.headless,
                    args=['--no-sandbox', '--disable-dev-shm-usage'],
                )
            return self._browser

    def close(self):
        with self._lock:
            if self._browser is not None:
                try:
                    self._browser.close()
                except PlaywrightError:
                    pass
                self._browser = None
            if self._playwright is not None:
                self._playwright.stop()
                self._playwright = None


class BrowserExecutor(UnsubscribeStrategy):
    """Execute unsubscribes that need a rendered page."""

    def __init__(self, pattern_store, browser_manager: BrowserManager, storage=None,
                 screenshots_dir: Optional[Path] = None, traces_dir: Optional[Path] = None,
                 timeout_ms: Optional[int] = None, rate_limit_delay: float = 1.0, **kwargs):
        """
        Args:
            pattern_store: PatternStore with learned selectors and page texts
            browser_manager: shared BrowserManager
            storage: optional object storage for traces
            screenshots_dir: where screenshots are written
            traces_dir: where trace archives are written
            timeout_ms: navigation and action timeout
        """
        super().__init__(rate_limit_delay=rate_limit_delay, **kwargs)
        self.patterns = pattern_store
        self.browser_manager = browser_manager
        self.storage = storage
        self.screenshots_dir = Path(screenshots_dir) if screenshots_dir else Config.get_screenshots_dir()
        self.traces_dir = Path(traces_dir) if traces_dir else Config.get_traces_dir()
        self.timeout_ms = timeout_ms if timeout_ms is not None else Config.BROWSER_TIMEOUT_MS

    @property
    def method_name(self) -> str:
        return METHOD_BROWSER

    def _perform_execution(self, target: UnsubscribeTarget, url: str) -> ExecutionResult:
        return self.perform(url, target.artifact_id or target.message_id or 'attempt')

    def perform(self, url: str, attempt_key: str) -> ExecutionResult:
        """Run the browser flow for one URL. ``attempt_key`` names the artifacts."""
        validation = validate_unsubscribe_url(url)
        if not validation.is_valid:
            return ExecutionResult.failed(self.method_name, 'invalid_url', validation.error, url=url)
        safe_url = validation.url

        context = self.browser_manager.get_browser().new_context(
            user_agent=USER_AGENT, viewport=VIEWPORT
        )
        context.tracing.start(screenshots=True, snapshots=True)
        run = _BrowserRun(self, context, safe_url, attempt_key)
        try:
            return run.execute()
        finally:
            run.discard_trace()
            context.close()

    # Artifacts

    def _screenshot(self, page, filename: str) -> Optional[str]:
        path = self.screenshots_dir / filename
        try:
            page.screenshot(path=str(path), full_page=True)
        except PlaywrightError as e:
            self.logger.warning("Screenshot failed", {'path': str(path), 'error': str(e)})
            return None
        return str(path)

    def _save_trace(self, context, attempt_key: str, outcome: str) -> Optional[str]:
        """Stop tracing into a file, uploading it when storage is configured."""
        local_path = self.traces_dir / f"{attempt_key}-trace.zip"
        try:
            context.tracing.stop(path=str(local_path))
        except PlaywrightError as e:
            self.logger.warning("Saving trace failed", {'error': str(e)})
            return None

        if self.storage is None:
            return str(local_path)

        remote_path = f"traces/{outcome}/{attempt_key}-trace.zip"
        try:
            return self.storage.upload_and_cleanup(str(local_path), remote_path, 'application/zip')
        except StorageUploadError as e:
            self.logger.warning("Trace upload failed, keeping local file", {'error': str(e)})
            return str(local_path)

    # Pattern matching

    def _match_text(self, content: str, pattern_type: str, generic: Callable[[str], Optional[str]]):
        pattern = heuristics.find_text_pattern(content, self.patterns.get_patterns(pattern_type))
        if pattern is not None:
            self.patterns.increment_match_count(pattern.id)
            return pattern.name
        return generic(content)

    def _match_success(self, content: str) -> Optional[str]:
        return self._match_text(content, 'success_text', heuristics.find_generic_success)

    def _match_error(self, content: str) -> Optional[str]:
        return self._match_text(content, 'error_text', heuristics.find_generic_error)

    # Page interaction

    def _visible(self, page, selector: str):
        try:
            element = page.query_selector(selector)
            if element is not None and element.is_visible():
                return element
        except PlaywrightError:
            pass
        return None

    def _try_click(self, page, selector: str) -> bool:
        element = self._visible(page, selector)
        if element is None:
            return False
        try:
            element.click(timeout=CLICK_TIMEOUT_MS)
        except PlaywrightError as e:
            self.logger.debug("Click failed", {'selector': selector, 'error': str(e)})
            return False
        return True

    def _select_reason(self, page) -> Optional[str]:
        """Best-effort answer to a "why are you leaving" question."""
        for selector in heuristics.REASON_DROPDOWN_SELECTORS:
            select = self._visible(page, selector)
            if select is None:
                continue
            try:
                for index, option in enumerate(select.query_selector_all('option')):
                    if index >= 1 and (option.text_content() or '').strip():
                        select.select_option(index=index)
                        page.wait_for_timeout(SETTLE_AFTER_REASON_MS)
                        return 'dropdown'
            except PlaywrightError as e:
                self.logger.debug("Reason dropdown failed", {'selector': selector, 'error': str(e)})

        for selector in heuristics.REASON_RADIO_SELECTORS:
            if self._try_click(page, selector):
                return 'radio'

        for selector in heuristics.REASON_LABEL_SELECTORS:
            if self._try_click(page, selector):
                return 'label'

        return None

    def _click_unsubscribe(self, page) -> Optional[str]:
        """Click the best unsubscribe control; returns what matched."""
        reason = self._select_reason(page)
        if reason:
            self.logger.debug("Answered reason question", {'kind': reason})

        for pattern in self.patterns.get_patterns('button_selector'):
            if self._try_click(page, pattern.selector):
                self.patterns.increment_match_count(pattern.id)
                return pattern.name

        for selector in heuristics.GENERIC_BUTTON_SELECTORS:
            if self._try_click(page, selector):
                return selector

        return None


class _BrowserRun:
    """State of one browser attempt (page, artifacts, trace)."""

    def __init__(self, executor: BrowserExecutor, context, url: str, attempt_key: str):
        self.executor = executor
        self.context = context
        self.url = url
        self.key = attempt_key
        self.trace_open = True
        self.screenshot_path = None
        self.final_screenshot_path = None

    def discard_trace(self):
        if not self.trace_open:
            return
        self.trace_open = False
        try:
            self.context.tracing.stop()
        except PlaywrightError:
            pass

    def _result(self, outcome: str, **fields) -> ExecutionResult:
        self.trace_open = False
        trace_path = self.executor._save_trace(self.context, self.key, outcome)
        return ExecutionResult(
            method=self.executor.method_name, url=self.url, trace_path=trace_path,
            screenshot_path=self.screenshot_path,
            final_screenshot_path=self.final_screenshot_path, **fields
        )

    def _early_failure(self, reason: str, message: str) -> ExecutionResult:
        return ExecutionResult.failed(self.executor.method_name, reason, message, url=self.url,
                                      screenshot_path=self.screenshot_path)

    def execute(self) -> ExecutionResult:
        executor = self.executor
        page = self.context.new_page()
        page.set_default_timeout(executor.timeout_ms)

        try:
            page.goto(self.url, wait_until='domcontentloaded', timeout=executor.timeout_ms)
        except PlaywrightError as e:
            reason = heuristics.categorize_exception(e)
            if reason == 'unknown':
                reason = 'navigation_error'
            return self._early_failure(reason, f"Navigation failed: {e}")

        try:
            page.wait_for_timeout(SETTLE_AFTER_LOAD_MS)
            self.screenshot_path = executor._screenshot(page, f"{self.key}-initial.png")
            content = page.content()

            captcha = heuristics.detect_captcha(content)
            if captcha:
                return self._early_failure('captcha_detected', f"CAPTCHA detected ({captcha})")

            login = heuristics.detect_login_required(content, self.url)
            if login:
                return self._early_failure('login_required', f"Login required ({login})")

            already = executor._match_success(content)
            if already:
                executor.logger.info("Page already shows success", {'pattern': already})
                return self._result('success', success=True, matched_pattern=already)

            button = executor._click_unsubscribe(page)
            if button is None:
                return self._result('failed', failure_reason='no_button_found',
                                    error_message='No unsubscribe button found')

            page.wait_for_timeout(SETTLE_AFTER_CLICK_MS)
            self.final_screenshot_path = executor._screenshot(page, f"{self.key}-final.png")
            content = page.content()

            success = executor._match_success(content)
            if success:
                return self._result('success', success=True, matched_pattern=button)

            error = executor._match_error(content)
            if error:
                return self._result('failed', failure_reason='form_error',
                                    error_message=f"Page reported an error ({error})",
                                    matched_pattern=button)

            return self._result('failed', uncertain=True, matched_pattern=button,
                                error_message='No success or error message after clicking')

        except PlaywrightError as e:
            executor.logger.log_exception(e, {'url': self.url})
            return self._result('failed', failure_reason=heuristics.categorize_exception(e),
                                error_message=str(e))
