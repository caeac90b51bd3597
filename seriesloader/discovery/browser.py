"""
Selenium helpers shared by page-driven capabilities.

Kept as free functions so a capability composes only what it needs.
"""
from __future__ import annotations
import time
from typing import Iterable

import structlog
from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.common.by import By
from selenium.webdriver.support.ui import WebDriverWait

from ..config import BrowserSettings

log = structlog.get_logger()

BASE_ARGUMENTS = (
    "--disable-blink-features=AutomationControlled",
    "--disable-gpu",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-logging",
    "--log-level=3",
    "--silent",
)

# window.foundUrls collects every URL the page requests via fetch or XHR
NETWORK_MONITOR_JS = """
window.foundUrls = window.foundUrls || [];
if (!window.__seriesloaderMonitor) {
    window.__seriesloaderMonitor = true;
    if (window.fetch) {
        const originalFetch = window.fetch;
        window.fetch = function(...args) {
            const url = args[0];
            if (typeof url === 'string') { window.foundUrls.push(url); }
            else if (url && url.url) { window.foundUrls.push(url.url); }
            return originalFetch.apply(this, args);
        };
    }
    const originalOpen = XMLHttpRequest.prototype.open;
    XMLHttpRequest.prototype.open = function(method, url, ...args) {
        if (typeof url === 'string') { window.foundUrls.push(url); }
        return originalOpen.apply(this, [method, url, ...args]);
    };
}
"""


def chrome_options(settings: BrowserSettings) -> Options:
    opts = Options()
    if settings.headless:
        opts.add_argument("--headless=new")
    for arg in BASE_ARGUMENTS:
        opts.add_argument(arg)
    opts.add_experimental_option("excludeSwitches", ["enable-automation"])
    opts.add_experimental_option("useAutomationExtension", False)
    if settings.user_agent:
        opts.add_argument(f"--user-agent={settings.user_agent}")
    if settings.proxy:
        opts.add_argument(f"--proxy-server={settings.proxy}")
    if settings.disable_images:
        opts.add_experimental_option(
            "prefs", {"profile.managed_default_content_settings.images": 2}
        )
    for arg in settings.arguments:
        opts.add_argument(arg)
    return opts


def create_driver(settings: BrowserSettings):
    driver = webdriver.Chrome(options=chrome_options(settings))
    driver.set_page_load_timeout(settings.page_load_timeout)
    log.debug("browser_started", headless=settings.headless)
    return driver


def wait_for_page_load(driver, timeout: float, settle: float = 0.5) -> bool:
    try:
        WebDriverWait(driver, timeout).until(
            lambda d: d.execute_script("return document.readyState") == "complete"
        )
    except TimeoutException:
        log.warning("page_load_timeout", url=driver.current_url, timeout=timeout)
        return False
    if settle:
        time.sleep(settle)
    return True


def install_network_monitor(driver) -> None:
    driver.execute_script(NETWORK_MONITOR_JS)


def collect_monitored_urls(driver) -> list[str]:
    try:
        urls = driver.execute_script("return window.foundUrls || [];") or []
    except WebDriverException as e:
        log.warning("network_monitor_read_failed", error=str(e))
        return []
    return [str(u) for u in urls if u]


def click_first_visible(driver, selectors: Iterable[str]) -> str | None:
    """Click the first displayed and enabled element; returns the selector used."""
    for selector in selectors:
        try:
            elements = driver.find_elements(By.CSS_SELECTOR, selector)
            if not elements:
                continue
            el = elements[0]
            if el.is_displayed() and el.is_enabled():
                driver.execute_script("arguments[0].click();", el)
                log.debug("clicked", selector=selector)
                return selector
        except WebDriverException as e:
            log.debug("click_failed", selector=selector, error=str(e))
    return None
