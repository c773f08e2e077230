"""
Rules-Based Grouping Engine.

Deterministic and free: no provider calls, no budget checks. Contacts are
clustered by company (name and company email domain), by submission time,
by event-like bursts of submissions and by geographic proximity. Company
names are compared exactly after trimming and case-folding; there is no
fuzzy matching.
"""

import math
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.features.contact_intelligence.domain.email_domains import (
    analyze_email_domain,
    company_identifier,
    extract_email_domain,
)
from app.features.contact_intelligence.domain.errors import FeatureGateError
from app.features.contact_intelligence.domain.models import Contact, Group, new_group_id
from app.features.contact_intelligence.domain.options import RulesGroupingOptions
from app.features.contact_intelligence.domain.subscriptions import (
    Feature,
    has_feature,
    required_tier,
)
from app.features.contact_intelligence.repository import ContactRepository, GroupRepository
from app.features.contact_intelligence.services.budget_gate import budget_gate
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371.0
OVERLAP_THRESHOLD = 0.8
DOMAIN_MIN_CONFIDENCE = 0.6


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _short_date(value: datetime) -> str:
    return f"{value.month}/{value.day}/{value.year}"


def _timestamp(contact: Contact) -> datetime | None:
    ts = contact.submitted_at
    if ts is None:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def _timed(contacts: list[Contact]) -> list[tuple[datetime, Contact]]:
    timed = [(ts, c) for c in contacts if (ts := _timestamp(c)) is not None]
    timed.sort(key=lambda pair: pair[0])
    return timed


def _hours(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


# ---------------------------------------------------------------------------
# Clustering rules
# ---------------------------------------------------------------------------


def group_by_company(contacts: list[Contact], min_group_size: int) -> list[Group]:
    """Company-name groups, plus company-email-domain groups merged into any overlapping one."""
    by_name: dict[str, dict[str, Any]] = {}
    by_domain: dict[str, dict[str, Any]] = {}

    for contact in contacts:
        if contact.company and contact.company.strip():
            key = contact.company.strip().casefold()
            entry = by_name.setdefault(
                key, {"name": contact.company.strip(), "contacts": [], "confidence": 0.9}
            )
            entry["contacts"].append(contact)

        domain = extract_email_domain(contact.email)
        if domain:
            analysis = analyze_email_domain(domain)
            if analysis.is_company_domain and analysis.confidence > DOMAIN_MIN_CONFIDENCE:
                company_id = company_identifier(domain)
                entry = by_domain.setdefault(
                    company_id,
                    {
                        "name": company_id,
                        "domain": domain,
                        "contacts": [],
                        "confidence": analysis.confidence,
                    },
                )
                entry["contacts"].append(contact)

    merged: list[dict[str, Any]] = []
    for entry in by_name.values():
        if len(entry["contacts"]) >= min_group_size:
            merged.append({**entry, "sources": ["company_name"], "domain": None})

    for entry in by_domain.values():
        if len(entry["contacts"]) < min_group_size:
            continue
        domain_ids = {c.id for c in entry["contacts"]}
        target = next(
            (m for m in merged if domain_ids & {c.id for c in m["contacts"]}), None
        )
        if target is None:
            merged.append({**entry, "sources": ["email_domain"]})
            continue

        known = {c.id for c in target["contacts"]}
        target["contacts"].extend(c for c in entry["contacts"] if c.id not in known)
        target["sources"].append("email_domain")
        target["domain"] = entry["domain"]
        target["name"] = f"{target['name']} ({entry['domain']})"

    groups = []
    for entry in merged:
        member_ids = [c.id for c in entry["contacts"]]
        groups.append(
            Group(
                id=new_group_id("rules_company"),
                name=f"{entry['name']} Team",
                type="rules_company",
                contact_ids=member_ids,
                description=(
                    f"Rules-based group for {len(set(member_ids))} contacts from the same company "
                    f"({' + '.join(entry['sources'])})"
                ),
                metadata={
                    "rules_generated": True,
                    "sources": entry["sources"],
                    "email_domain": entry["domain"],
                    "company_name": entry["name"],
                    "confidence": "high" if entry["confidence"] > 0.8 else "medium",
                },
            )
        )
    return groups


def group_by_time(
    contacts: list[Contact], min_group_size: int, gap_hours: float = 3.0
) -> list[Group]:
    """Same-day submissions split wherever consecutive contacts are more than gap_hours apart."""
    by_day: dict[Any, list[tuple[datetime, Contact]]] = {}
    for ts, contact in _timed(contacts):
        by_day.setdefault(ts.date(), []).append((ts, contact))

    groups = []
    for day_contacts in by_day.values():
        if len(day_contacts) < min_group_size:
            continue

        clusters = [[day_contacts[0]]]
        for previous, current in zip(day_contacts, day_contacts[1:]):
            if _hours(previous[0], current[0]) <= gap_hours:
                clusters[-1].append(current)
            else:
                clusters.append([current])

        for cluster in clusters:
            if len(cluster) < min_group_size:
                continue
            start, end = cluster[0][0], cluster[-1][0]
            label = _short_date(start)
            groups.append(
                Group(
                    id=new_group_id("rules_time"),
                    name=f"{label} Event",
                    type="rules_time",
                    contact_ids=[c.id for _, c in cluster],
                    description=f"Rules-based group for {len(cluster)} contacts added on {label}",
                    metadata={
                        "rules_generated": True,
                        "event_date": label,
                        "time_span_hours": round(_hours(start, end), 2),
                        "confidence": "high" if len(cluster) >= 5 else "medium",
                    },
                )
            )
    return groups


def _event_kind(size: int, duration_hours: float) -> tuple[str, str]:
    if duration_hours <= 2:
        return "rapid_networking", "Networking Event"
    if size >= 10:
        return "conference", "Conference"
    if duration_hours >= 6:
        return "multi_day_event", "Multi-day Event"
    return "event", "Event"


def group_by_events(
    contacts: list[Contact], min_group_size: int, window_hours: float = 4.0
) -> list[Group]:
    """Bursts of submissions within window_hours of the burst's first contact."""
    timed = _timed(contacts)
    used: set[str] = set()
    groups = []

    for i, (anchor_ts, anchor) in enumerate(timed):
        if anchor.id in used:
            continue

        burst = [(anchor_ts, anchor)]
        for ts, other in timed[i + 1 :]:
            if other.id in used:
                continue
            if _hours(anchor_ts, ts) > window_hours:
                break
            burst.append((ts, other))

        if len(burst) < min_group_size:
            continue

        used.update(c.id for _, c in burst)
        duration = _hours(burst[0][0], burst[-1][0])
        event_type, event_name = _event_kind(len(burst), duration)
        groups.append(
            Group(
                id=new_group_id("rules_event"),
                name=f"{event_name} - {_short_date(anchor_ts)}",
                type="rules_event",
                contact_ids=[c.id for _, c in burst],
                description=f"Rules-based group for {len(burst)} contacts from {event_name.lower()}",
                metadata={
                    "rules_generated": True,
                    "event_date": anchor_ts.isoformat(),
                    "event_type": event_type,
                    "duration_hours": round(duration, 2),
                    "contact_count": len(burst),
                    "confidence": "high" if len(burst) >= 5 and duration <= 8 else "medium",
                },
            )
        )
    return groups


def group_by_location(
    contacts: list[Contact], min_group_size: int, threshold_km: float
) -> list[Group]:
    """Greedy clusters of contacts within threshold_km of the cluster's first contact."""
    located = [c for c in contacts if c.location and c.location.has_coordinates]
    if len(located) < min_group_size:
        return []

    used: set[str] = set()
    clusters = []
    for contact in located:
        if contact.id in used:
            continue
        used.add(contact.id)
        cluster = [contact]
        for other in located:
            if other.id in used:
                continue
            distance = haversine_km(
                contact.location.latitude,
                contact.location.longitude,
                other.location.latitude,
                other.location.longitude,
            )
            if distance <= threshold_km:
                cluster.append(other)
                used.add(other.id)
        if len(cluster) >= min_group_size:
            clusters.append(cluster)

    groups = []
    for number, cluster in enumerate(clusters, start=1):
        center_lat = sum(c.location.latitude for c in cluster) / len(cluster)
        center_lng = sum(c.location.longitude for c in cluster) / len(cluster)
        radius_m = max(
            haversine_km(center_lat, center_lng, c.location.latitude, c.location.longitude) * 1000
            for c in cluster
        )
        groups.append(
            Group(
                id=new_group_id("rules_location"),
                name=f"Location Group {number}",
                type="rules_location",
                contact_ids=[c.id for c in cluster],
                description=f"Rules-based group for {len(cluster)} contacts in the same area",
                metadata={
                    "rules_generated": True,
                    "location_data": {
                        "center": {"lat": center_lat, "lng": center_lng},
                        "radius_m": round(radius_m, 1),
                    },
                    "confidence": "high" if radius_m <= 500 else "medium",
                },
            )
        )
    return groups


def deduplicate_by_overlap(groups: list[Group], threshold: float = OVERLAP_THRESHOLD) -> list[Group]:
    """Drop a group when more than `threshold` of the smaller set is already covered by an earlier one."""
    kept: list[Group] = []
    seen: list[set[str]] = []
    for group in groups:
        members = set(group.contact_ids)
        if not members:
            continue
        overlapping = any(
            len(members & other) / min(len(members), len(other)) > threshold for other in seen
        )
        if not overlapping:
            kept.append(group)
            seen.append(members)
    return kept


def make_names_unique(groups: list[Group]) -> list[Group]:
    """Suffix repeated names (two clusters on one day) so every group can be saved."""
    counts: dict[str, int] = {}
    for group in groups:
        key = group.normalized_name
        counts[key] = counts.get(key, 0) + 1
        if counts[key] > 1:
            group.name = f"{group.name} ({counts[key]})"
    return groups


def build_rule_groups(contacts: list[Contact], options: RulesGroupingOptions) -> list[Group]:
    candidates: list[Group] = []
    if options.group_by_company:
        candidates.extend(group_by_company(contacts, options.min_group_size))
    if options.group_by_time:
        candidates.extend(group_by_time(contacts, options.min_group_size, options.time_gap_hours))
    if options.group_by_location:
        candidates.extend(
            group_by_location(contacts, options.min_group_size, options.location_threshold_km)
        )
    if options.group_by_events:
        candidates.extend(
            group_by_events(contacts, options.min_group_size, options.event_window_hours)
        )

    unique = deduplicate_by_overlap(candidates)
    return make_names_unique(unique[: options.max_groups])


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class RulesGroupingResult:
    groups: list[Group] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "groups": [group.to_dict() for group in self.groups],
            "stats": self.stats,
            "message": self.message,
        }


class RulesGroupingService:
    def __init__(self, contact_repository=ContactRepository, group_repository=GroupRepository, gate=None):
        self.contact_repository = contact_repository
        self.group_repository = group_repository
        self.gate = gate or budget_gate

    async def generate(
        self, user_id: str, options: RulesGroupingOptions | None = None
    ) -> RulesGroupingResult:
        options = options or RulesGroupingOptions()
        started = time.monotonic()

        tier = await self.gate.get_tier(user_id)
        if not has_feature(tier, Feature.RULES_GROUPING):
            raise FeatureGateError(
                Feature.RULES_GROUPING.value,
                tier.value,
                required_tier(Feature.RULES_GROUPING).value,
            )

        contacts = await self.contact_repository.list_contacts(user_id)
        if not contacts:
            return RulesGroupingResult(message="No contacts found to group")
        if len(contacts) < 2:
            return RulesGroupingResult(message="Need at least 2 contacts for grouping")

        groups = build_rule_groups(contacts, options)

        saved_count = 0
        duplicates_skipped = 0
        if options.save and groups:
            save_result = await self.group_repository.save_generated_groups(user_id, groups)
            saved_count = save_result.saved_count
            duplicates_skipped = save_result.duplicates_skipped

        stats = {
            "total_groups": len(groups),
            "contacts_processed": len(contacts),
            "processing_time_ms": round((time.monotonic() - started) * 1000, 1),
            "type": "rules_based",
            "company_groups": sum(1 for g in groups if "company" in g.type),
            "time_groups": sum(1 for g in groups if "time" in g.type),
            "location_groups": sum(1 for g in groups if "location" in g.type),
            "event_groups": sum(1 for g in groups if "event" in g.type),
            "saved_count": saved_count,
            "duplicates_skipped": duplicates_skipped,
        }
        logger.info("Rules-based groups generated", user_id=user_id, **stats)
        return RulesGroupingResult(groups=groups, stats=stats)


rules_grouping_service = RulesGroupingService()
