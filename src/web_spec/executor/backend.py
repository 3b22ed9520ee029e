import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from playwright.sync_api import sync_playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..core.exceptions import BackendError, BackendSessionError

logger = logging.getLogger(__name__)

SUPPORTED_BROWSERS = ('chromium', 'firefox', 'webkit')


class AutomationBackend(ABC):
    """
    Primitive browser operations the step handlers are written against.

    Every primitive raises BackendError on failure. The extended operations
    (hover, select, check, ...) fall back to execute_script so a backend only
    has to provide the core primitives.
    """

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @abstractmethod
    def navigate(self, url: str) -> None:
        pass

    @abstractmethod
    def click(self, selector: str) -> None:
        pass

    @abstractmethod
    def type_text(self, selector: str, text: str) -> None:
        pass

    @abstractmethod
    def wait_for(self, selector: str, condition: str = "visible", timeout_ms: Optional[int] = None) -> None:
        """Wait until the selector reaches a state: visible, hidden, attached or detached"""
        pass

    @abstractmethod
    def extract(self, selector: Optional[str] = None, kind: str = "text", attribute: Optional[str] = None) -> Any:
        """
        Read a value from the page.

        With a selector, kind is one of text, html, value, attribute, count,
        visible, enabled, checked, focused. Without one it is title, url,
        html or text of the whole page.
        """
        pass

    @abstractmethod
    def screenshot(self, path: str) -> str:
        pass

    @abstractmethod
    def execute_script(self, code: str) -> Any:
        pass

    def close(self) -> None:
        pass

    # Extended operations

    def _on_element(self, selector: str, body: str) -> Any:
        return self.execute_script(
            "(() => { const el = document.querySelector(%s);"
            " if (!el) { throw new Error('Element not found'); } %s })()" % (json.dumps(selector), body)
        )

    def go_back(self) -> None:
        self.execute_script("history.back()")

    def go_forward(self) -> None:
        self.execute_script("history.forward()")

    def reload(self) -> None:
        self.execute_script("location.reload()")

    def double_click(self, selector: str) -> None:
        self._on_element(selector, "el.dispatchEvent(new MouseEvent('dblclick', {bubbles: true}));")

    def hover(self, selector: str) -> None:
        self._on_element(selector, "el.dispatchEvent(new MouseEvent('mouseover', {bubbles: true}));")

    def clear(self, selector: str) -> None:
        self._on_element(selector, "el.value = ''; el.dispatchEvent(new Event('input', {bubbles: true}));")

    def select_option(self, selector: str, value: str) -> None:
        self._on_element(
            selector,
            "el.value = %s; el.dispatchEvent(new Event('change', {bubbles: true}));" % json.dumps(value),
        )

    def set_checked(self, selector: str, checked: bool) -> None:
        self._on_element(
            selector,
            "el.checked = %s; el.dispatchEvent(new Event('change', {bubbles: true}));" % json.dumps(checked),
        )

    def press(self, key: str, selector: Optional[str] = None) -> None:
        target = "document.querySelector(%s)" % json.dumps(selector) if selector else "document.activeElement"
        self.execute_script(
            "(%s || document.body).dispatchEvent(new KeyboardEvent('keydown', {key: %s, bubbles: true}))"
            % (target, json.dumps(key))
        )

    def scroll_to(self, selector: str) -> None:
        self._on_element(selector, "el.scrollIntoView();")


class PlaywrightBackend(AutomationBackend):
    """Backend session on one Playwright browser page"""

    def __init__(
            self,
            browser: str = "chromium",
            headless: bool = True,
            timeout_ms: int = 30000,
            slow_mo: int = 0,
            viewport: Optional[Dict[str, int]] = None,
            base_url: Optional[str] = None,
    ):
        if browser not in SUPPORTED_BROWSERS:
            raise BackendSessionError(f"Unsupported browser: {browser}")
        self.browser_name = browser
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.slow_mo = slow_mo
        self.viewport = viewport or {"width": 1280, "height": 720}
        self.base_url = base_url
        self._playwright = None
        self._browser = None
        self._page = None

    @classmethod
    def from_config(cls, config) -> "PlaywrightBackend":
        return cls(
            browser=config.browser,
            headless=config.headless,
            timeout_ms=config.timeout_ms,
            slow_mo=config.slow_mo,
            viewport=config.viewport,
            base_url=config.base_url,
        )

    def start(self) -> "PlaywrightBackend":
        """Launch the browser and open a page"""
        try:
            self._playwright = sync_playwright().start()
            browser_type = getattr(self._playwright, self.browser_name)
            self._browser = browser_type.launch(headless=self.headless, slow_mo=self.slow_mo)
            context_args = {'viewport': self.viewport}
            if self.base_url:
                context_args['base_url'] = self.base_url
            context = self._browser.new_context(**context_args)
            self._page = context.new_page()
            self._page.set_default_timeout(self.timeout_ms)
        except PlaywrightError as e:
            self.close()
            raise BackendSessionError(f"Failed to start {self.browser_name} session: {e}") from e

        logger.info(f"Started {self.browser_name} session (headless={self.headless})")
        return self

    @property
    def page(self):
        if self._page is None:
            raise BackendSessionError("Backend session is not started")
        return self._page

    def _call(self, action: str, func: Callable[[], Any], selector: Optional[str] = None,
              timeout_ms: Optional[int] = None) -> Any:
        """Run a Playwright call, wrapping its failures uniformly"""
        try:
            return func()
        except PlaywrightTimeoutError as e:
            raise BackendError(
                f"Timed out during {action}" + (f" on '{selector}'" if selector else "") + f": {e}",
                code="timeout",
                selector=selector,
                timeout_ms=timeout_ms or self.timeout_ms,
            ) from e
        except PlaywrightError as e:
            raise BackendError(
                f"{action} failed" + (f" on '{selector}'" if selector else "") + f": {e}",
                code="element_not_found" if selector else "backend_error",
                selector=selector,
            ) from e

    def navigate(self, url: str) -> None:
        self._call("navigate", lambda: self.page.goto(url))

    def click(self, selector: str) -> None:
        self._call("click", lambda: self.page.click(selector), selector)

    def type_text(self, selector: str, text: str) -> None:
        self._call("type", lambda: self.page.fill(selector, text), selector)

    def wait_for(self, selector: str, condition: str = "visible", timeout_ms: Optional[int] = None) -> None:
        timeout = timeout_ms or self.timeout_ms
        self._call(
            f"wait for {condition}",
            lambda: self.page.wait_for_selector(selector, state=condition, timeout=timeout),
            selector,
            timeout,
        )

    def extract(self, selector: Optional[str] = None, kind: str = "text", attribute: Optional[str] = None) -> Any:
        page = self.page
        if selector is None:
            page_readers = {
                'title': page.title,
                'url': lambda: page.url,
                'html': page.content,
                'text': lambda: page.inner_text('body'),
            }
            if kind not in page_readers:
                raise BackendError(f"Unsupported page extraction: {kind}", code="unsupported")
            return self._call(f"extract {kind}", page_readers[kind])

        locator = page.locator(selector)
        readers = {
            'text': lambda: locator.first.inner_text(),
            'html': lambda: locator.first.inner_html(),
            'value': lambda: locator.first.input_value(),
            'attribute': lambda: locator.first.get_attribute(attribute),
            'count': locator.count,
            'visible': lambda: locator.first.is_visible(),
            'enabled': lambda: locator.first.is_enabled(),
            'checked': lambda: locator.first.is_checked(),
            'focused': lambda: locator.first.evaluate("el => el === document.activeElement"),
        }
        if kind not in readers:
            raise BackendError(f"Unsupported extraction: {kind}", code="unsupported", selector=selector)
        return self._call(f"extract {kind}", readers[kind], selector)

    def screenshot(self, path: str) -> str:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._call("screenshot", lambda: self.page.screenshot(path=path, full_page=True))
        return path

    def execute_script(self, code: str) -> Any:
        return self._call("execute script", lambda: self.page.evaluate(code))

    def go_back(self) -> None:
        self._call("go back", self.page.go_back)

    def go_forward(self) -> None:
        self._call("go forward", self.page.go_forward)

    def reload(self) -> None:
        self._call("reload", self.page.reload)

    def double_click(self, selector: str) -> None:
        self._call("double click", lambda: self.page.dblclick(selector), selector)

    def hover(self, selector: str) -> None:
        self._call("hover", lambda: self.page.hover(selector), selector)

    def clear(self, selector: str) -> None:
        self._call("clear", lambda: self.page.fill(selector, ""), selector)

    def select_option(self, selector: str, value: str) -> None:
        self._call("select option", lambda: self.page.select_option(selector, value), selector)

    def set_checked(self, selector: str, checked: bool) -> None:
        self._call("set checked", lambda: self.page.set_checked(selector, checked), selector)

    def press(self, key: str, selector: Optional[str] = None) -> None:
        if selector:
            self._call("press", lambda: self.page.press(selector, key), selector)
        else:
            self._call("press", lambda: self.page.keyboard.press(key))

    def scroll_to(self, selector: str) -> None:
        self._call("scroll", lambda: self.page.locator(selector).first.scroll_into_view_if_needed(), selector)

    def close(self) -> None:
        """Close the browser and stop Playwright; safe to call twice"""
        try:
            if self._browser is not None:
                self._browser.close()
        except PlaywrightError as e:
            logger.warning(f"Error closing browser: {e}")
        finally:
            self._browser = None
            self._page = None
            playwright, self._playwright = self._playwright, None
            if playwright is not None:
                playwright.stop()
