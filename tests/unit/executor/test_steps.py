import json

import pytest

from web_spec.executor.test_context import TestContext


@pytest.fixture
def backend(make_backend):
    return make_backend(page_text="Welcome back, alice", title="Dashboard",
                         url="https://example.com/dashboard")


@pytest.fixture
def context(backend, tmp_path):
    return TestContext(backend_factory=lambda: backend, base_url="https://example.com",
                       screenshot_dir=str(tmp_path))


def run(registry, context, text, keyword="When"):
    match = registry.match(text, keyword)
    assert match, f"no pattern for: {text}"
    return match.pattern.handler(context, **match.params)


class TestNavigationSteps:

    def test_navigate_resolves_relative_url(self, registry, context, backend):
        assert run(registry, context, 'I navigate to "/login"') == "https://example.com/login"
        assert backend.calls == [('navigate', "https://example.com/login")]

    def test_navigate_keeps_absolute_url(self, registry, context, backend):
        run(registry, context, 'I go to "https://other.org/"')
        assert backend.calls == [('navigate', "https://other.org/")]

    def test_history_steps_fall_back_to_script(self, registry, context, backend):
        run(registry, context, 'I go back')
        run(registry, context, 'I refresh the page')
        assert [call[0] for call in backend.calls] == ['execute_script', 'execute_script']


class TestInteractionSteps:

    def test_click(self, registry, context, backend):
        run(registry, context, 'I click on "#submit"')
        assert backend.calls == [('click', "#submit")]

    def test_click_button_by_label(self, registry, context, backend):
        run(registry, context, 'I click the "Sign in" button')
        assert backend.calls == [('click', 'button:has-text("Sign in")')]

    def test_type_uses_stored_values(self, registry, context, backend):
        run(registry, context, 'I set "user" to "alice"', "Given")
        run(registry, context, 'I type "${user}" into "#username"')
        assert backend.calls == [('type_text', "#username", "alice")]

    def test_unknown_stored_value(self, registry, context):
        with pytest.raises(KeyError):
            run(registry, context, 'I type "${nobody}" into "#username"')


class TestVerificationSteps:

    def test_should_see_passes(self, registry, context):
        run(registry, context, 'I should see "Welcome back"', "Then")

    def test_should_see_fails_with_assertion(self, registry, context):
        with pytest.raises(AssertionError, match="Expected to see 'Goodbye'"):
            run(registry, context, 'I should see "Goodbye"', "Then")

    def test_should_not_see(self, registry, context):
        run(registry, context, 'I should not see "Error"', "Then")
        with pytest.raises(AssertionError):
            run(registry, context, 'I should not see "alice"', "Then")

    def test_title_and_url(self, registry, context):
        run(registry, context, 'the title should be "Dashboard"', "Then")
        run(registry, context, 'the URL should contain "/dashboard"', "Then")
        with pytest.raises(AssertionError):
            run(registry, context, 'the title should be "Login"', "Then")

    def test_element_count(self, registry, context):
        run(registry, context, 'there should be 2 ".item"', "Then")
        with pytest.raises(AssertionError, match="Expected 5"):
            run(registry, context, 'there should be 5 ".item"', "Then")

    @pytest.mark.parametrize("text", [
        'I should see "Goodbye"',
        'I should not see "Welcome back"',
        'the title should be "Login"',
        'the URL should contain "/settings"',
        'the text of "h1" should be "Hello"',
        'there should be 5 ".item"',
    ])
    def test_unmet_expectation_raises(self, registry, context, text):
        with pytest.raises(AssertionError):
            run(registry, context, text, "Then")

    def test_invisible_element_raises(self, registry, context, backend, monkeypatch):
        monkeypatch.setattr(backend, "extract", lambda selector=None, kind="text", attribute=None: False)
        with pytest.raises(AssertionError, match="'#banner' to be visible"):
            run(registry, context, 'the element "#banner" should be visible', "Then")


class TestExtractionSteps:

    def test_extract_text_is_recorded(self, registry, context):
        assert run(registry, context, 'I extract text from ".headline"') == "Welcome back, alice"
        assert context.extracted[".headline"] == "Welcome back, alice"

    def test_extract_attribute(self, registry, context):
        assert run(registry, context, 'I extract attribute "href" from "a.next"') == "href-value"
        assert context.extracted["a.next@href"] == "href-value"

    def test_screenshot_path_in_output(self, registry, context, tmp_path):
        path = run(registry, context, 'I take a screenshot "checkout"')
        assert path.startswith(str(tmp_path))
        assert path.endswith(".png")

    def test_execute_script_serializes_result(self, registry, context, backend):
        backend.script_result = {"a": 1}
        assert json.loads(run(registry, context, 'I execute JavaScript "window.data"')) == {"a": 1}
        backend.script_result = None
        assert run(registry, context, 'I execute JavaScript "void 0"') is None


class TestStateSteps:

    def test_store_element_text(self, registry, context):
        run(registry, context, 'I store the text of ".order" as "order"')
        assert context.get_data("order") == "Welcome back, alice"

    def test_local_storage_uses_script(self, registry, context, backend):
        run(registry, context, 'I set local storage item "theme" to "dark"')
        assert backend.calls == [('execute_script', 'localStorage.setItem("theme", "dark")')]

    def test_scroll_to_percentage(self, registry, context, backend):
        run(registry, context, 'I scroll to position 50%')
        assert "* 50 / 100" in backend.calls[0][1]
