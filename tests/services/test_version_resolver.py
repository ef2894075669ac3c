import pytest

from guacsetup.constants import GUACAMOLE_VERSION_PATTERN, TOMCAT_VERSION_PATTERN
from guacsetup.errors import DownloadError, ResolutionError
from guacsetup.models import ReleaseVersion
from guacsetup.services.version_resolver import VersionResolver


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None


class FakeDownloadService:
    def __init__(self, listing=None, error=None):
        self.listing = listing
        self.error = error
        self.urls = []

    def fetch_text(self, url, label="index"):
        self.urls.append(url)
        if self.error:
            raise self.error
        return self.listing


def _page(*names):
    links = "\n".join(f'<a href="{name}/">{name}/</a>' for name in names)
    return f'<a href="../">Parent Directory</a>\n{links}\n<a href="KEYS">KEYS</a>'


def test_resolve_latest_ignores_pre_releases():
    downloads = FakeDownloadService(_page("1.5.0", "1.6.0", "1.6.0-rc1", "2.0.0-alpha"))
    resolver = VersionResolver(downloads, DummyLogger())

    latest = resolver.resolve_latest("https://example.invalid/guacamole/", GUACAMOLE_VERSION_PATTERN)

    assert latest == ReleaseVersion(1, 6, 0)
    assert downloads.urls == ["https://example.invalid/guacamole/"]


def test_resolve_latest_orders_numerically_not_lexically():
    downloads = FakeDownloadService(_page("v9.0.9", "v9.0.100", "v9.0.98"))
    resolver = VersionResolver(downloads, DummyLogger())

    latest = resolver.resolve_latest("https://example.invalid/tomcat-9/", TOMCAT_VERSION_PATTERN)

    assert str(latest) == "9.0.100"


def test_parse_listing_discards_non_release_entries():
    resolver = VersionResolver(FakeDownloadService(), DummyLogger())

    versions = resolver.parse_listing(
        _page("1.5.0", "1.5.0", "1.5", "1.5.0.1", "01.5.0", "1.6.0rc1", "1.6.0.post1", "binary"),
        GUACAMOLE_VERSION_PATTERN,
    )

    assert versions == [ReleaseVersion(1, 5, 0)]


def test_resolve_latest_reports_unreachable_index():
    downloads = FakeDownloadService(error=DownloadError("connection refused"))
    resolver = VersionResolver(downloads, DummyLogger())

    with pytest.raises(ResolutionError) as exc_info:
        resolver.resolve_latest("https://example.invalid/guacamole/", GUACAMOLE_VERSION_PATTERN)

    assert "not reachable" in str(exc_info.value)
    assert "connection refused" in str(exc_info.value)


def test_resolve_latest_rejects_listing_without_stable_release():
    downloads = FakeDownloadService(_page("1.6.0-rc1", "2.0.0-alpha"))
    resolver = VersionResolver(downloads, DummyLogger())

    with pytest.raises(ResolutionError, match="No stable release found"):
        resolver.resolve_latest("https://example.invalid/guacamole/", GUACAMOLE_VERSION_PATTERN)
