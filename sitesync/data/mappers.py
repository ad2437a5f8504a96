from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class SiteRecord:
    site_id: Optional[str] = None
    name: Optional[str] = None
    code: Optional[str] = None
    status: Optional[str] = None
    city: Optional[str] = None
    street: Optional[str] = None
    cluster_name: Optional[str] = None
    cluster_id: Optional[str] = None

    @property
    def location(self) -> Optional[str]:
        city = self.city or ""
        street = self.street or ""
        if not city and not street:
            return None
        return f"{city} {street}".strip()

    def snapshot(self) -> dict[str, str]:
        return {
            "siteId": self.site_id or "",
            "siteName": self.name or "",
            "siteCode": self.code or "",
            "status": self.status or "",
            "city": self.city or "",
            "street": self.street or "",
            "location": self.location or "",
            "clusterName": self.cluster_name or "",
            "clusterId": self.cluster_id or "",
        }


def to_site_record(raw: dict) -> SiteRecord:
    """Map one master-service site object; unknown fields are ignored."""
    return SiteRecord(
        site_id=_str_or_none(raw.get("id")),
        name=_str_or_none(raw.get("name")),
        code=_str_or_none(raw.get("locationCode")),
        status=_str_or_none(raw.get("active")),
        city=_str_or_none(raw.get("city")),
        street=_str_or_none(raw.get("street")),
        cluster_name=_str_or_none(raw.get("clusterName")),
        cluster_id=_str_or_none(raw.get("clusterId")),
    )


def sites_snapshot_json(sites: Iterable[SiteRecord]) -> str:
    return json.dumps({"sites": [s.snapshot() for s in sites]}, ensure_ascii=False)


@dataclass(frozen=True)
class NumberRange:
    type: Optional[str]
    lower_bound: Any
    upper_bound: Any
    prefix: Any


@dataclass
class SiteDetail:
    site: Optional[str]
    cm: Optional[str]
    ranges: list[NumberRange] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "Site": self.site,
            "CM": self.cm,
            "Ranges": [
                {
                    "Type": r.type,
                    "Lowerbound": r.lower_bound,
                    "Upperbound": r.upper_bound,
                    "Prefix": r.prefix,
                }
                for r in self.ranges
            ],
        }


def _row_get(row: Any, key: str) -> Any:
    if isinstance(row, dict):
        return row.get(key)
    return getattr(row, key, None)


def group_site_details(rows: Iterable[Any]) -> list[SiteDetail]:
    """Group detail rows by (site, cm), keeping first-seen order."""
    groups: dict[tuple, SiteDetail] = {}
    for row in rows:
        site = _str_or_none(_row_get(row, "site"))
        cm = _str_or_none(_row_get(row, "cm"))
        key = (site, cm)
        detail = groups.get(key)
        if detail is None:
            detail = SiteDetail(site=site, cm=cm)
            groups[key] = detail
        detail.ranges.append(
            NumberRange(
                type=_str_or_none(_row_get(row, "type")),
                lower_bound=_row_get(row, "lowerbound"),
                upper_bound=_row_get(row, "upperbound"),
                prefix=_row_get(row, "prefix"),
            )
        )
    return list(groups.values())
