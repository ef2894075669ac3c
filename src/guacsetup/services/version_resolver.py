"""Latest stable release lookup from upstream directory listings."""

import re
from typing import List

from packaging.version import InvalidVersion, Version

from guacsetup.errors import DownloadError, ResolutionError
from guacsetup.errors_catalog import actionable_error
from guacsetup.models import ReleaseVersion


class VersionResolver:
    """Resolves the highest stable ``N.N.N`` release published in an index."""

    def __init__(self, download_service, logger):
        self.download_service = download_service
        self.logger = logger

    def parse_listing(self, listing: str, pattern: str) -> List[ReleaseVersion]:
        """Extract stable release versions from a semi-structured index page.

        ``pattern`` must have one capture group yielding a candidate version.
        Candidates that are not plain three-component releases (release
        candidates, alphas, four-component or zero-padded forms, parent links)
        are discarded. The result is sorted ascending and de-duplicated.
        """
        found = set()
        for candidate in re.findall(pattern, listing):
            try:
                parsed = Version(candidate)
            except InvalidVersion:
                continue
            if parsed.is_prerelease or parsed.is_postrelease or parsed.local:
                continue
            if len(parsed.release) != 3 or str(parsed) != candidate:
                continue
            found.add(ReleaseVersion(*parsed.release))
        return sorted(found)

    def resolve_latest(self, index_url: str, pattern: str) -> ReleaseVersion:
        try:
            listing = self.download_service.fetch_text(index_url, label="release index")
        except DownloadError as exc:
            raise ResolutionError(
                actionable_error("index_unreachable", url=index_url, reason=str(exc))
            ) from exc

        versions = self.parse_listing(listing, pattern)
        if not versions:
            raise ResolutionError(actionable_error("no_release_found", url=index_url))

        latest = versions[-1]
        self.logger.debug("Versions in %s: %s", index_url, ", ".join(map(str, versions)))
        self.logger.info("Latest release in %s is %s", index_url, latest)
        return latest
