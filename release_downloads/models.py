"""Row types shared by the store, the backfill engine and the exporters."""

from dataclasses import asdict, dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional


@dataclass
class AssetSnapshot:
    """Cumulative download count of one asset on one bucket day"""
    asset_id: int
    asset_name: str
    tag_name: str
    date: date
    download_count: int
    draft: bool = False
    prerelease: bool = False


@dataclass
class BackfillEvent:
    """Audit record of one backfilled span"""
    start_date: date
    end_date: date
    strategy: str
    total_delta: int
    lookback_days: Optional[int] = None
    trend_window: Optional[int] = None
    noise_scale: Optional[float] = None
    created_at: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["start_date"] = self.start_date.isoformat()
        d["end_date"] = self.end_date.isoformat()
        return d


def snapshots_from_releases(releases: Iterable, bucket_date: date) -> List[AssetSnapshot]:
    """Flatten fetched releases into one snapshot row per asset"""
    rows = []
    for release in releases:
        for asset in release.assets:
            rows.append(AssetSnapshot(
                asset_id=asset.asset_id,
                asset_name=asset.name,
                tag_name=release.tag_name,
                date=bucket_date,
                download_count=asset.download_count,
                draft=release.draft,
                prerelease=release.prerelease,
            ))
    return rows
