#!/usr/bin/env python3
"""
GitHub Releases Collector
Fetches releases and their asset download counts from the GitHub REST API
Any failure yields an empty release list so the cycle can carry on
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .config import (
    GITHUB_API_BASE,
    GITHUB_REPO,
    HEADERS,
    MAX_RETRIES,
    RELEASES_PER_PAGE,
    TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


@dataclass
class ReleaseAsset:
    asset_id: int
    name: str
    download_count: int


@dataclass
class Release:
    tag_name: str
    draft: bool = False
    prerelease: bool = False
    assets: List[ReleaseAsset] = field(default_factory=list)

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "Release":
        """Build a release from a GitHub API release object"""
        assets = [
            ReleaseAsset(
                asset_id=int(asset["id"]),
                name=asset.get("name", ""),
                download_count=int(asset.get("download_count") or 0),
            )
            for asset in item.get("assets") or []
        ]
        return cls(
            tag_name=item.get("tag_name", ""),
            draft=bool(item.get("draft")),
            prerelease=bool(item.get("prerelease")),
            assets=assets,
        )


def _is_transient(exc: BaseException) -> bool:
    """Connection problems, rate limits and 5xx responses are worth retrying"""
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class ReleaseCollector:
    """
    Collects release asset download counts for one repository
    Authentication: optional token sent as `Authorization: token <PAT>`
    """

    def __init__(self, repo: str = GITHUB_REPO, token: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.repo = repo
        self.base_url = GITHUB_API_BASE
        self.session = session or requests.Session()
        self.session.headers.update(HEADERS)
        if token:
            self.session.headers["Authorization"] = f"token {token}"

    @property
    def releases_url(self) -> str:
        return f"{self.base_url}/repos/{self.repo}/releases"

    @retry(
        retry=retry_if_exception(_is_transient),
        wait=wait_exponential(multiplier=1, min=2, max=60),
        stop=stop_after_attempt(MAX_RETRIES),
        reraise=True,
    )
    def _get_page(self, url: str, params: Optional[dict] = None) -> requests.Response:
        """GET one page of releases, raising on any non-2xx response"""
        response = self.session.get(url, params=params, timeout=TIMEOUT_SECONDS)
        if response.status_code == 429:
            logger.warning(f"Rate limited on {url}")
        response.raise_for_status()
        return response

    def fetch_releases(self) -> List[Release]:
        """Fetch every release page; returns [] if any request fails"""
        logger.info(f"Fetching releases from {self.releases_url}...")

        releases: List[Release] = []
        url: Optional[str] = self.releases_url
        params: Optional[dict] = {"per_page": RELEASES_PER_PAGE}

        try:
            while url:
                response = self._get_page(url, params)
                payload = response.json()
                releases.extend(Release.from_api(item) for item in payload)

                # Follow the Link header; the next URL already carries the query
                url = response.links.get("next", {}).get("url")
                params = None
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            logger.error(f"GitHub API request failed: {status} for {self.releases_url}")
            return []
        except requests.RequestException as e:
            logger.error(f"Error fetching GitHub releases: {e}")
            return []
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Unexpected releases payload: {e}")
            return []

        asset_count = sum(len(release.assets) for release in releases)
        logger.info(f"Fetched {len(releases)} releases ({asset_count} assets).")
        return releases
