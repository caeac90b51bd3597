"""Tests for the discovery registry and the Vidmoly capability (fake browser)."""

import pytest
from selenium.common.exceptions import WebDriverException

from seriesloader.config import BrowserSettings
from seriesloader.db.codes import LinkType
from seriesloader.discovery import DiscoveryRegistry, EpisodeContext, LinkDiscovery
from seriesloader.discovery.vidmoly import VidmolyDiscovery, embeds_in_html
from seriesloader.exceptions import DiscoveryFault

from conftest import StubDiscovery

EPISODE = "https://s.to/serie/stream/demo/staffel-1/episode-1"
CTX = EpisodeContext("demo", 1, 1)


class FakeDriver:
    """Minimal WebDriver: serves canned HTML per URL and records navigation."""

    def __init__(self, pages):
        self.pages = pages
        self.visited = []
        self.current_url = ""
        self.page_source = ""
        self.quit_called = False

    def get(self, url):
        if url not in self.pages:
            raise WebDriverException(f"net::ERR_NAME_NOT_RESOLVED {url}")
        self.visited.append(url)
        self.current_url = url
        self.page_source = self.pages[url]

    def execute_script(self, script, *args):
        if "readyState" in script:
            return "complete"
        if "return window.foundUrls" in script:
            return []
        return None

    def find_elements(self, by, selector):
        return []

    def quit(self):
        self.quit_called = True


def _capability(pages):
    driver = FakeDriver(pages)
    cap = VidmolyDiscovery(
        BrowserSettings(page_load_timeout=1),
        driver_factory=lambda settings: driver,
        redirect_wait=0,
        player_wait=0,
    )
    return cap, driver


class Named(StubDiscovery):
    def __init__(self, name, handles):
        super().__init__()
        self.name = name
        self.handles = handles

    def can_handle(self, url):
        return self.handles in url


def test_registry_lookup_is_case_insensitive():
    reg = DiscoveryRegistry([Named("Vidmoly", "vidmoly")])
    assert reg.get("vidmoly") is reg.get(" VIDMOLY ")
    assert reg.for_host("VidMoly").name == "Vidmoly"
    assert reg.get("voe") is None
    assert len(reg) == 1


def test_find_for_url_honours_preference():
    a = Named("A", "example")
    b = Named("B", "example")
    reg = DiscoveryRegistry([a, b])
    assert reg.find_for_url("https://example.to/e1") is a
    assert reg.find_for_url("https://example.to/e1", preferred="B") is b
    # preferred capability that cannot handle the URL falls back
    assert reg.find_for_url("https://example.to/e1", preferred="C") is a
    assert reg.find_for_url("https://other.to/e1") is None


def test_register_rejects_nameless_capability():
    with pytest.raises(ValueError):
        DiscoveryRegistry([Named("  ", "x")])


def test_stub_and_vidmoly_satisfy_protocol():
    assert isinstance(StubDiscovery(), LinkDiscovery)
    assert isinstance(VidmolyDiscovery(), LinkDiscovery)


def test_embeds_in_html_sources_and_dedup():
    html = """
    <iframe src="https://vidmoly.to/embed-aaa111.html"></iframe>
    <a href="https://vidmoly.to/embed-bbb222.html">mirror</a>
    <input type="hidden" value="https://vidmoly.to/embed-ccc333.html">
    <script>var u = "https://vidmoly.to/embed-ddd444.html";</script>
    <a href="https://vidmoly.to/embed-aaa111.html">again</a>
    <iframe src="https://voe.sx/e/xyz"></iframe>
    """
    assert embeds_in_html(html) == [
        "https://vidmoly.to/embed-aaa111.html",
        "https://vidmoly.to/embed-bbb222.html",
        "https://vidmoly.to/embed-ccc333.html",
        "https://vidmoly.to/embed-ddd444.html",
    ]


def test_extract_links_from_episode_page():
    cap, driver = _capability({EPISODE: '<iframe src="https://vidmoly.to/embed-abc123.html"></iframe>'})
    assert cap.initialize()
    links = cap.extract_links(EPISODE, CTX)
    assert [l.url for l in links] == ["https://vidmoly.to/embed-abc123.html"]
    assert links[0].host_name == "Vidmoly"
    assert links[0].type == LinkType.EMBED
    cap.cleanup()
    assert driver.quit_called
    assert cap.driver is None


def test_extract_links_follows_redirects_and_returns():
    pages = {
        EPISODE: '<a href="/redirect/42">Vidmoly</a>',
        "https://s.to/redirect/42": '<iframe src="https://vidmoly.to/embed-zzz999.html"></iframe>',
    }
    cap, driver = _capability(pages)
    cap.initialize()
    links = cap.extract_links(EPISODE, CTX)
    assert [l.url for l in links] == ["https://vidmoly.to/embed-zzz999.html"]
    assert driver.visited == [EPISODE, "https://s.to/redirect/42", EPISODE]


def test_broken_redirect_is_skipped():
    cap, driver = _capability({EPISODE: '<a href="/redirect/404">dead</a>'})
    cap.initialize()
    assert cap.extract_links(EPISODE, CTX) == []
    assert driver.visited[-1] == EPISODE


def test_unreachable_episode_page_raises():
    cap, _ = _capability({})
    cap.initialize()
    with pytest.raises(DiscoveryFault):
        cap.extract_links(EPISODE, CTX)


def test_extract_requires_initialize():
    with pytest.raises(DiscoveryFault):
        VidmolyDiscovery().extract_links(EPISODE, CTX)


def test_initialize_reports_browser_failure():
    def boom(settings):
        raise WebDriverException("chrome not found")

    assert VidmolyDiscovery(driver_factory=boom).initialize() is False


def test_next_episode_url_falls_back_to_increment():
    cap, _ = _capability({})
    cap.initialize()
    assert cap.next_episode_url(EPISODE).endswith("/staffel-1/episode-2")


def test_validate_link_rejects_non_embed_without_network():
    assert VidmolyDiscovery().validate_link("https://voe.sx/e/xyz") is False
