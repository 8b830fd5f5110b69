import pytest
from unittest.mock import patch, MagicMock

from src.pipeline.fetchers.playwright import BrowserSession, BrowserSettings


def wire(mock_sync_playwright):
    mock_page = MagicMock()
    mock_context = MagicMock()
    mock_context.new_page.return_value = mock_page
    mock_browser = MagicMock()
    mock_browser.new_context.return_value = mock_context
    mock_playwright = MagicMock()
    mock_playwright.chromium.launch.return_value = mock_browser
    mock_sync_playwright.return_value.__enter__.return_value = mock_playwright
    return mock_playwright, mock_browser, mock_context, mock_page


@patch('src.pipeline.fetchers.playwright.sync_playwright')
def test_session_yields_configured_page_and_closes(mock_sync_playwright):
    mock_playwright, mock_browser, mock_context, mock_page = wire(mock_sync_playwright)
    settings = BrowserSettings(headless=False, slow_mo_ms=50, viewport_width=1024, viewport_height=700, navigation_timeout_ms=30000)

    with BrowserSession(settings) as page:
        assert page is mock_page

    launch_kwargs = mock_playwright.chromium.launch.call_args.kwargs
    assert launch_kwargs["headless"] is False
    assert launch_kwargs["slow_mo"] == 50
    assert '--no-sandbox' not in launch_kwargs["args"]
    ctx_kwargs = mock_browser.new_context.call_args.kwargs
    assert ctx_kwargs["viewport"] == {"width": 1024, "height": 700}
    mock_page.set_default_timeout.assert_called_once_with(30000)
    mock_browser.close.assert_called_once()
    mock_sync_playwright.return_value.__exit__.assert_called_once()


@patch('src.pipeline.fetchers.playwright.sync_playwright')
def test_launch_failure_propagates_and_stops_playwright(mock_sync_playwright):
    mock_playwright, _, _, _ = wire(mock_sync_playwright)
    mock_playwright.chromium.launch.side_effect = Exception("Executable doesn't exist")

    with pytest.raises(Exception, match="Executable"):
        with BrowserSession():
            pass

    mock_sync_playwright.return_value.__exit__.assert_called_once()


@patch('src.pipeline.fetchers.playwright.sync_playwright')
def test_close_swallows_browser_errors(mock_sync_playwright):
    _, mock_browser, _, _ = wire(mock_sync_playwright)
    mock_browser.close.side_effect = Exception("already closed")
    session = BrowserSession()
    session.open()
    session.close()
    assert session.page is None
