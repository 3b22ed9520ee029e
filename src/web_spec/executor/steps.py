import json
import time
import logging
from typing import Optional

from .step_definitions import StepDefinitionRegistry
from .test_context import TestContext

logger = logging.getLogger(__name__)


def register_builtin_steps(registry: StepDefinitionRegistry) -> StepDefinitionRegistry:
    """
    Register the built-in step catalog.

    Handler function names double as the stable pattern ids exported in the
    schema, so renaming one is a breaking change for client integrations.
    """

    # Navigation steps
    @registry.step('I navigate to {url:string}', category="Navigation",
                   aliases=['I go to {url:string}', 'I open {url:string}'],
                   examples=['I navigate to "https://example.com"', 'I go to "/login"'])
    def navigate_to(context: TestContext, url: str):
        """Navigate to a specified URL"""
        target = context.resolve_url(context.interpolate(url))
        context.backend.navigate(target)
        return target

    @registry.step('I go back', category="Navigation", aliases=['I navigate back'],
                   examples=['I go back'])
    def go_back(context: TestContext):
        """Navigate back in browser history"""
        context.backend.go_back()

    @registry.step('I go forward', category="Navigation", aliases=['I navigate forward'],
                   examples=['I go forward'])
    def go_forward(context: TestContext):
        """Navigate forward in browser history"""
        context.backend.go_forward()

    @registry.step('I refresh the page', category="Navigation", aliases=['I reload the page'],
                   examples=['I refresh the page'])
    def refresh(context: TestContext):
        """Reload the current page"""
        context.backend.reload()

    # Interaction steps
    @registry.step('I click on {selector:string}', category="Interaction",
                   aliases=['I click {selector:string}'],
                   examples=['I click on "#submit"', 'I click ".menu-item"'])
    def click(context: TestContext, selector: str):
        """Click on an element"""
        context.backend.click(context.interpolate(selector))

    @registry.step('I click the {label:string} button', category="Interaction",
                   examples=['I click the "Sign in" button'])
    def click_button(context: TestContext, label: str):
        """Click a button element by its label"""
        context.backend.click(f'button:has-text("{context.interpolate(label)}")')

    @registry.step('I double click on {selector:string}', category="Interaction",
                   aliases=['I double-click {selector:string}'],
                   examples=['I double click on ".row"'])
    def double_click(context: TestContext, selector: str):
        """Double-click an element"""
        context.backend.double_click(context.interpolate(selector))

    @registry.step('I hover over {selector:string}', category="Interaction",
                   aliases=['I hover {selector:string}', 'I mouse over {selector:string}'],
                   examples=['I hover over ".dropdown"'])
    def hover(context: TestContext, selector: str):
        """Hover over an element"""
        context.backend.hover(context.interpolate(selector))

    # Input steps
    @registry.step('I type {text:string} into {selector:string}', category="Input",
                   aliases=['I enter {text:string} into {selector:string}',
                            'I fill {selector:string} with {text:string}'],
                   examples=['I type "alice" into "#username"'])
    def type_text(context: TestContext, text: str, selector: str):
        """Type text into an input field"""
        context.backend.type_text(context.interpolate(selector), context.interpolate(text))

    @registry.step('I clear {selector:string}', category="Input",
                   aliases=['I clear the field {selector:string}'],
                   examples=['I clear "#search"'])
    def clear_text(context: TestContext, selector: str):
        """Clear the contents of an input field"""
        context.backend.clear(context.interpolate(selector))

    @registry.step('I select {option:string} from {selector:string}', category="Input",
                   examples=['I select "Canada" from "#country"'])
    def select_option(context: TestContext, option: str, selector: str):
        """Select an option from a dropdown"""
        context.backend.select_option(context.interpolate(selector), context.interpolate(option))

    @registry.step('I check {selector:string}', category="Input", examples=['I check "#terms"'])
    def check(context: TestContext, selector: str):
        """Check a checkbox"""
        context.backend.set_checked(context.interpolate(selector), True)

    @registry.step('I uncheck {selector:string}', category="Input", examples=['I uncheck "#newsletter"'])
    def uncheck(context: TestContext, selector: str):
        """Uncheck a checkbox"""
        context.backend.set_checked(context.interpolate(selector), False)

    @registry.step('I press {key:string} key', category="Input",
                   aliases=['I press the {key:string} key'],
                   examples=['I press "Escape" key'])
    def press_key(context: TestContext, key: str):
        """Press a keyboard key"""
        context.backend.press(key)

    @registry.step('I press Enter', category="Input", aliases=['I press the Enter key'],
                   examples=['I press Enter'])
    def press_enter(context: TestContext):
        """Press the Enter key"""
        context.backend.press("Enter")

    # Waiting steps
    @registry.step('I wait {seconds:float} seconds', category="Waiting",
                   aliases=['I wait for {seconds:float} seconds'],
                   examples=['I wait 2 seconds', 'I wait 0.5 seconds'])
    def wait_seconds(context: TestContext, seconds: float):
        """Pause for a fixed number of seconds"""
        time.sleep(seconds)

    @registry.step('I wait for element {selector:string} to be visible', category="Waiting",
                   aliases=['I wait for {selector:string} to appear',
                            'I wait for {selector:string} to be visible'],
                   examples=['I wait for element ".results" to be visible'])
    def wait_visible(context: TestContext, selector: str):
        """Wait for an element to become visible"""
        context.backend.wait_for(context.interpolate(selector), "visible", context.timeout_ms)

    @registry.step('I wait for element {selector:string} to be hidden', category="Waiting",
                   aliases=['I wait for {selector:string} to disappear'],
                   examples=['I wait for element ".spinner" to be hidden'])
    def wait_hidden(context: TestContext, selector: str):
        """Wait for an element to become hidden"""
        context.backend.wait_for(context.interpolate(selector), "hidden", context.timeout_ms)

    @registry.step('I wait for text {text:string} to appear', category="Waiting",
                   examples=['I wait for text "Saved" to appear'])
    def wait_for_text(context: TestContext, text: str):
        """Wait for text to appear"""
        context.backend.wait_for(f'text={context.interpolate(text)}', "visible", context.timeout_ms)

    # Verification steps
    @registry.step('I should see {text:string}', category="Verification",
                   aliases=['I should see the text {text:string}'],
                   examples=['I should see "Welcome back"'])
    def should_see(context: TestContext, text: str):
        """Verify text is present on the page"""
        expected = context.interpolate(text)
        page_text = context.backend.extract(kind="text") or ""
        if expected not in page_text:
            raise AssertionError(f"Expected to see '{expected}' on the page")

    @registry.step('I should not see {text:string}', category="Verification",
                   aliases=['I should not see the text {text:string}'],
                   examples=['I should not see "Error"'])
    def should_not_see(context: TestContext, text: str):
        """Verify text is absent from the page"""
        unexpected = context.interpolate(text)
        page_text = context.backend.extract(kind="text") or ""
        if unexpected in page_text:
            raise AssertionError(f"Did not expect to see '{unexpected}' on the page")

    @registry.step('the title should be {title:string}', category="Verification",
                   aliases=['the page title should be {title:string}'],
                   examples=['the title should be "Dashboard"'])
    def title_should_be(context: TestContext, title: str):
        """Verify page title"""
        expected = context.interpolate(title)
        actual = context.backend.extract(kind="title")
        if actual != expected:
            raise AssertionError(f"Expected title '{expected}', got '{actual}'")

    @registry.step('the URL should contain {fragment:string}', category="Verification",
                   examples=['the URL should contain "/dashboard"'])
    def url_should_contain(context: TestContext, fragment: str):
        """Verify URL contains value"""
        expected = context.interpolate(fragment)
        actual = context.backend.extract(kind="url")
        if expected not in actual:
            raise AssertionError(f"Expected URL to contain '{expected}', got '{actual}'")

    @registry.step('the text of {selector:string} should be {text:string}', category="Verification",
                   aliases=['the text of {selector:string} should equal {text:string}'],
                   examples=['the text of "h1" should be "Hello"'])
    def text_should_be(context: TestContext, selector: str, text: str):
        """Verify element text equals value"""
        expected = context.interpolate(text)
        actual = (context.backend.extract(context.interpolate(selector), "text") or "").strip()
        if actual != expected:
            raise AssertionError(f"Expected text '{expected}', got '{actual}'")

    @registry.step('the element {selector:string} should be visible', category="Verification",
                   aliases=['{selector:string} should be visible'],
                   examples=['the element "#banner" should be visible'])
    def should_be_visible(context: TestContext, selector: str):
        """Verify element is visible"""
        target = context.interpolate(selector)
        if not context.backend.extract(target, "visible"):
            raise AssertionError(f"Expected '{target}' to be visible")

    @registry.step('there should be {count:int} {selector:string}', category="Verification",
                   aliases=['I should see {count:int} {selector:string} elements'],
                   examples=['there should be 3 ".item"'])
    def should_see_exact_count_elements(context: TestContext, count: int, selector: str):
        """Verify exact count of specific elements"""
        target = context.interpolate(selector)
        actual = context.backend.extract(target, "count")
        if actual != count:
            raise AssertionError(f"Expected {count} '{target}' element(s), found {actual}")

    # Extraction steps
    @registry.step('I extract text from {selector:string}', category="Extraction",
                   aliases=['I get the text of {selector:string}'],
                   examples=['I extract text from ".headline"'])
    def extract_text(context: TestContext, selector: str) -> Optional[str]:
        """Extract the text of an element"""
        target = context.interpolate(selector)
        return context.record(target, context.backend.extract(target, "text"))

    @registry.step('I extract the page title', category="Extraction",
                   aliases=['I get the page title'],
                   examples=['I extract the page title'])
    def extract_title(context: TestContext) -> Optional[str]:
        """Extract the page title"""
        return context.record("title", context.backend.extract(kind="title"))

    @registry.step('I extract attribute {attribute:string} from {selector:string}', category="Extraction",
                   examples=['I extract attribute "href" from "a.next"'])
    def extract_attribute_from_element(context: TestContext, attribute: str, selector: str) -> Optional[str]:
        """Extract an attribute value from an element"""
        target = context.interpolate(selector)
        value = context.backend.extract(target, "attribute", attribute=attribute)
        return context.record(f"{target}@{attribute}", value)

    @registry.step('I take a screenshot {name:string}', category="Extraction",
                   aliases=['I capture screenshot {name:string}'],
                   examples=['I take a screenshot "checkout"'])
    def screenshot(context: TestContext, name: str) -> str:
        """Take a screenshot"""
        return context.backend.screenshot(context.screenshot_path(context.interpolate(name)))

    @registry.step('I execute JavaScript {script:string}', category="Extraction",
                   aliases=['I run JavaScript {script:string}', 'I execute script {script:string}'],
                   examples=['I execute JavaScript "document.title"'])
    def execute_script(context: TestContext, script: str) -> Optional[str]:
        """Execute JavaScript and capture its result"""
        result = context.backend.execute_script(context.interpolate(script))
        if result is None:
            return None
        return result if isinstance(result, str) else json.dumps(result)

    # State steps
    @registry.step('I set {name:string} to {value:string}', category="State",
                   aliases=['I store {value:string} as {name:string}'],
                   examples=['I set "username" to "alice"'])
    def store_value(context: TestContext, name: str, value: str):
        """Store value in variable"""
        context.store_data(name, context.interpolate(value))

    @registry.step('I store the text of {selector:string} as {name:string}', category="State",
                   examples=['I store the text of ".order-id" as "order"'])
    def store_element_text(context: TestContext, selector: str, name: str) -> Optional[str]:
        """Store the text of an element in a variable"""
        value = context.backend.extract(context.interpolate(selector), "text")
        context.store_data(name, value)
        return value

    @registry.step('I set local storage item {key:string} to {value:string}', category="State",
                   examples=['I set local storage item "theme" to "dark"'])
    def set_local_storage(context: TestContext, key: str, value: str):
        """Set local storage value"""
        context.backend.execute_script(
            "localStorage.setItem(%s, %s)" % (json.dumps(key), json.dumps(context.interpolate(value)))
        )

    @registry.step('I get local storage item {key:string}', category="State",
                   examples=['I get local storage item "theme"'])
    def get_local_storage(context: TestContext, key: str) -> Optional[str]:
        """Get local storage value"""
        value = context.backend.execute_script("localStorage.getItem(%s)" % json.dumps(key))
        return context.record(f"localStorage.{key}", value)

    # Scrolling steps
    @registry.step('I scroll to {selector:string}', category="Scrolling",
                   aliases=['I scroll to the element {selector:string}'],
                   examples=['I scroll to "#footer"'])
    def scroll_to_element(context: TestContext, selector: str):
        """Scroll to a specific element"""
        context.backend.scroll_to(context.interpolate(selector))

    @registry.step('I scroll to position {percent:int}%', category="Scrolling",
                   examples=['I scroll to position 50%'])
    def scroll_to_percentage(context: TestContext, percent: int):
        """Scroll to percentage"""
        context.backend.execute_script(
            "window.scrollTo(0, document.body.scrollHeight * %d / 100)" % percent
        )

    logger.debug(f"Registered {len(registry)} built-in step definitions")
    return registry


def build_default_registry() -> StepDefinitionRegistry:
    """Fresh registry holding the built-in catalog, frozen for sharing"""
    return register_builtin_steps(StepDefinitionRegistry()).freeze()
