"""
VidmolyDiscovery: finds vidmoly.to embed URLs on streaming-site episode pages.

Strategy per episode page:
  1. scan the rendered page (iframes, anchors, hidden inputs, raw source) and
     the network monitor for embed URLs;
  2. if none, follow the page's stream/redirect links one by one, activate a
     player there, scan again, then navigate back.
"""
from __future__ import annotations
import re
import time
from typing import Callable, Optional
from urllib.parse import urljoin

import requests
import structlog
from bs4 import BeautifulSoup
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.common.by import By

from . import DiscoveredLink, EpisodeContext
from .browser import (
    create_driver, wait_for_page_load, install_network_monitor,
    collect_monitored_urls, click_first_visible,
)
from ..config import BrowserSettings
from ..db.codes import LinkType, Quality
from ..exceptions import DiscoveryFault
from ..urls import increment_episode

log = structlog.get_logger()

EMBED_RE = re.compile(r"https?://vidmoly\.to/embed-([a-zA-Z0-9]+)\.html", re.I)
_JS_URL_RE = re.compile(r"['\"]([^'\"]*(?:redirect|stream|embed)[^'\"]*)['\"]", re.I)

STREAM_SELECTORS = [
    ".watchEpisode",
    ".hosterSiteVideoButton",
    ".generateInlinePlayer a",
    ".hostingSiteVideoButton",
    "a[href*='redirect']",
    "li[data-link-target] a",
    "a[data-episode-id]",
    ".stream-link",
    ".video-link",
    ".hoster-link",
    "a[href*='/stream/']",
    "button[data-url]",
    ".btn-stream",
]

PLAY_SELECTORS = [
    ".vjs-big-play-button",
    ".jw-display-icon-container",
    "button[aria-label*='play']",
    ".play-button",
    ".btn-play",
    "video",
    ".video-play-button",
    "[class*='play']",
]

NEXT_EPISODE_SELECTORS = [
    "a[title*='nächste']",
    "a[title*='next']",
    ".next-episode",
    ".episode-next",
    ".pagination .next",
]

_PER_SELECTOR_LIMIT = 5
_ADDITIONAL_HINTS = ("redirect", "stream", "embed", "watch")
_SKIP_DOMAINS = ("facebook.com", "twitter.com")
_URL_HINTS = ("vidmoly.to", "stream", "episode", "staffel", "serie")


def _is_stream_link(url: str | None) -> bool:
    if not url or url == "#" or url.startswith("javascript:"):
        return False
    if any(d in url for d in _SKIP_DOMAINS):
        return False
    return url.startswith("/") or url.startswith("http")


def embeds_in_html(html: str) -> list[str]:
    """Embed URLs found in iframes, anchors, hidden inputs and the raw source, in page order."""
    found: list[str] = []

    def add(candidate: str | None):
        if candidate and EMBED_RE.fullmatch(candidate.strip()) and candidate.strip() not in found:
            found.append(candidate.strip())

    soup = BeautifulSoup(html, "html.parser")
    for iframe in soup.find_all("iframe"):
        add(iframe.get("src"))
    for a in soup.find_all("a", href=True):
        add(a["href"])
    for inp in soup.find_all("input", attrs={"type": "hidden"}):
        add(inp.get("value"))
    for m in EMBED_RE.finditer(html):
        add(m.group(0))
    return found


class VidmolyDiscovery:
    name = "Vidmoly"

    def __init__(
        self,
        settings: BrowserSettings | None = None,
        driver_factory: Callable = create_driver,
        redirect_wait: float = 2.0,
        player_wait: float = 1.5,
    ):
        self.settings = settings or BrowserSettings()
        self._driver_factory = driver_factory
        self._redirect_wait = redirect_wait
        self._player_wait = player_wait
        self.driver = None

    # ---------- lifecycle ----------

    def initialize(self) -> bool:
        try:
            self.driver = self._driver_factory(self.settings)
        except WebDriverException as e:
            log.error("browser_init_failed", capability=self.name, error=str(e))
            return False
        log.info("capability_ready", capability=self.name)
        return True

    def cleanup(self) -> None:
        if self.driver is None:
            return
        try:
            self.driver.quit()
        except WebDriverException as e:
            log.warning("browser_quit_failed", capability=self.name, error=str(e))
        finally:
            self.driver = None

    # ---------- protocol ----------

    def can_handle(self, url: str) -> bool:
        u = (url or "").lower()
        return any(h in u for h in _URL_HINTS)

    def extract_links(self, episode_url: str, context: EpisodeContext) -> list[DiscoveredLink]:
        if self.driver is None:
            raise DiscoveryFault(f"{self.name}: browser not initialized")
        log.info("episode_scrape", series=context.series_name,
                 season=context.season_number, episode=context.episode_number, url=episode_url)
        self._open(episode_url)

        urls = self._scan_current_page()
        if not urls:
            stream_links = self._stream_links()
            log.debug("stream_links_found", count=len(stream_links))
            for link in stream_links:
                for u in self._follow(link, episode_url):
                    if u not in urls:
                        urls.append(u)

        log.info("episode_links", episode=context.episode_number, count=len(urls))
        return [
            DiscoveredLink(url=u, host_name=self.name, type=LinkType.EMBED, quality=Quality.UNKNOWN)
            for u in urls
        ]

    def validate_link(self, url: str) -> bool:
        if not EMBED_RE.fullmatch(url or ""):
            return False
        try:
            r = requests.head(url, allow_redirects=True, timeout=self.settings.network_timeout)
        except requests.RequestException as e:
            log.debug("link_check_failed", url=url, error=str(e))
            return False
        return r.ok

    def next_episode_url(self, current_url: str) -> Optional[str]:
        if self.driver is not None:
            for selector in NEXT_EPISODE_SELECTORS:
                try:
                    elements = self.driver.find_elements(By.CSS_SELECTOR, selector)
                except WebDriverException:
                    continue
                if not elements:
                    continue
                href = elements[0].get_attribute("href")
                if href and "episode" in href.lower():
                    log.debug("next_episode_on_page", url=href)
                    return href
        return increment_episode(current_url)

    # ---------- internals ----------

    def _open(self, url: str) -> None:
        try:
            self.driver.get(url)
        except (TimeoutException, WebDriverException) as e:
            raise DiscoveryFault(f"cannot load {url}: {e}") from e
        wait_for_page_load(self.driver, self.settings.page_load_timeout)
        try:
            install_network_monitor(self.driver)
        except WebDriverException as e:
            log.debug("network_monitor_install_failed", error=str(e))

    def _scan_current_page(self) -> list[str]:
        urls = embeds_in_html(self.driver.page_source or "")
        current = self.driver.current_url or ""
        if EMBED_RE.fullmatch(current) and current not in urls:
            urls.insert(0, current)
        for u in collect_monitored_urls(self.driver):
            if EMBED_RE.fullmatch(u) and u not in urls:
                urls.append(u)
        return urls

    def _stream_links(self) -> list[str]:
        found: list[str] = []

        def add(u: str | None):
            if _is_stream_link(u) and u not in found:
                found.append(u)

        for selector in STREAM_SELECTORS:
            try:
                elements = self.driver.find_elements(By.CSS_SELECTOR, selector)
            except WebDriverException as e:
                log.debug("selector_failed", selector=selector, error=str(e))
                continue
            for el in elements[:_PER_SELECTOR_LIMIT]:
                add(el.get_attribute("href"))
                add(el.get_attribute("data-url"))
                onclick = el.get_attribute("onclick")
                if onclick:
                    for m in _JS_URL_RE.finditer(onclick):
                        add(m.group(1))

        soup = BeautifulSoup(self.driver.page_source or "", "html.parser")
        for a in soup.find_all("a", href=True):
            href = a["href"]
            if any(h in href for h in _ADDITIONAL_HINTS):
                add(href)
        return found

    def _follow(self, link: str, origin: str) -> list[str]:
        target = urljoin(origin, link)
        found: list[str] = []
        try:
            self._open(target)
            time.sleep(self._redirect_wait)
            found = self._scan_current_page()
            if click_first_visible(self.driver, PLAY_SELECTORS):
                time.sleep(self._player_wait)
                for u in self._scan_current_page():
                    if u not in found:
                        found.append(u)
        except (DiscoveryFault, WebDriverException) as e:
            log.warning("stream_link_failed", url=target, error=str(e))
        # back to the episode page; failing here means the page is gone
        self._open(origin)
        return found
