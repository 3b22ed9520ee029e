import pytest

from web_spec.core.exceptions import BackendError
from web_spec.executor import ExecutionEngine, ExecutorConfig, build_default_registry
from web_spec.executor.backend import AutomationBackend


class FakeBackend(AutomationBackend):
    """In-memory backend that records every primitive call"""

    def __init__(self, page_text="", title="", url="about:blank", failing_selectors=(), script_result=None):
        self.calls = []
        self.page_text = page_text
        self.title = title
        self.url = url
        self.failing_selectors = set(failing_selectors)
        self.script_result = script_result
        self.closed = False

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        for arg in args:
            if isinstance(arg, str) and arg in self.failing_selectors:
                raise BackendError(f"Element not found: {arg}", code="element_not_found",
                                   selector=arg, timeout_ms=1000)

    def navigate(self, url):
        self._record('navigate', url)
        self.url = url

    def click(self, selector):
        self._record('click', selector)

    def type_text(self, selector, text):
        self._record('type_text', selector, text)

    def wait_for(self, selector, condition="visible", timeout_ms=None):
        self._record('wait_for', selector, condition)

    def extract(self, selector=None, kind="text", attribute=None):
        self._record('extract', selector, kind)
        if kind == "title":
            return self.title
        if kind == "url":
            return self.url
        if kind == "count":
            return 2
        if kind == "visible":
            return True
        if kind == "attribute":
            return f"{attribute}-value"
        return self.page_text

    def screenshot(self, path):
        self._record('screenshot', path)
        return path

    def execute_script(self, code):
        self._record('execute_script', code)
        return self.script_result

    def close(self):
        self.closed = True


@pytest.fixture
def make_backend():
    return FakeBackend


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def backends():
    """Every FakeBackend opened through the backend_factory fixture"""
    return []


@pytest.fixture
def backend_factory(backends):
    def factory():
        backend = FakeBackend(page_text="Welcome back, alice", title="Dashboard",
                              failing_selectors={"#missing"})
        backends.append(backend)
        return backend

    return factory


@pytest.fixture
def engine(registry, backend_factory):
    return ExecutionEngine(registry, ExecutorConfig(), backend_factory=backend_factory)


@pytest.fixture
def feature_dir(tmp_path):
    """Three scenario files; the second one fails"""
    (tmp_path / "a_login.feature").write_text(
        'Feature: Login\n'
        '  Scenario: Open page\n'
        '    Given I navigate to "https://example.com"\n'
        '    Then I should see "Welcome"\n'
    )
    (tmp_path / "b_broken.feature").write_text(
        'Feature: Broken\n'
        '  Scenario: Missing element\n'
        '    Given I navigate to "https://example.com"\n'
        '    When I click on "#missing"\n'
    )
    (tmp_path / "c_search.feature").write_text(
        'Feature: Search\n'
        '  Scenario: Search page\n'
        '    Given I navigate to "https://example.com/search"\n'
        '    Then the title should be "Dashboard"\n'
    )
    return tmp_path
