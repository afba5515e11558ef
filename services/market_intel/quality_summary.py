# services/market_intel/quality_summary.py
"""
Per-job data-quality summary.

Built from the result accumulator once every data phase has run: quality per
data type, sanity discrepancies grouped by data type, passed/failed checks,
a reliability grade and a prioritised list of recommendations. The summary
rides along in the AI context and is stored on the job for pollers.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Set

from .types import DATA_PHASES, DiscrepancyType, Severity, SourceStatus

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

# (minimum overall quality, grade), checked top-down
RELIABILITY_GRADES = (
    (90, "excellent"),
    (75, "good"),
    (60, "fair"),
    (40, "poor"),
)


def reliability_grade(quality: int) -> str:
    for floor, grade in RELIABILITY_GRADES:
        if quality >= floor:
            return grade
    return "critical"


def confidence_level(quality: int, fatal_count: int) -> str:
    if fatal_count == 0 and quality >= 85:
        return "high"
    if fatal_count == 0 and quality >= 70:
        return "medium"
    if quality >= 50:
        return "low"
    return "very_low"


def _sanity(result: Mapping[str, Any]) -> Dict[str, Any]:
    payload = result.get("payload") or {}
    return payload.get("sanity") or {}


def _failed_sources(result: Mapping[str, Any]) -> Set[str]:
    out: Set[str] = set()
    for s in result.get("sources") or []:
        status = s.get("status")
        if status in (SourceStatus.FAILED.value, SourceStatus.TIMEOUT.value):
            out.add(s.get("source", "?"))
    return out


def _recommendation(priority: str, category: str, title: str, description: str, action: str,
                    affected: Optional[Set[str]] = None) -> Dict[str, Any]:
    return {
        "priority": priority,
        "category": category,
        "title": title,
        "description": description,
        "action": action,
        "affected_sources": sorted(affected or ()),
    }


def build_quality_summary(acc: Mapping[str, Any], overall_quality: int, quality_floor: int) -> Dict[str, Any]:
    by_data_type: Dict[str, Optional[int]] = {}
    discrepancies: Dict[str, List[Dict[str, Any]]] = {}
    passed: Set[str] = set()
    failed: Set[str] = set()
    unreliable: Set[str] = set()

    for phase in DATA_PHASES:
        result = acc.get(phase.value)
        if not result:
            by_data_type[phase.value] = None
            continue
        by_data_type[phase.value] = int(result.get("quality", 0))
        sanity = _sanity(result)
        for name, ok in (sanity.get("checks") or {}).items():
            (passed if ok else failed).add(name)
        found = list(sanity.get("discrepancies") or [])
        if found:
            discrepancies[phase.value] = found
        for d in found:
            unreliable.update(d.get("affected_sources") or ())
        unreliable |= _failed_sources(result)

    all_found = [d for found in discrepancies.values() for d in found]
    fatal = [d for d in all_found if d.get("severity") == Severity.FATAL.value]
    warnings = [d for d in all_found if d.get("severity") == Severity.WARNING.value]
    available = [p for p, q in by_data_type.items() if q is not None]
    missing = [p for p, q in by_data_type.items() if q is None]

    recs: List[Dict[str, Any]] = []
    if fatal:
        recs.append(_recommendation(
            "high", "action_required",
            "Critical data quality issues detected",
            f"{len(fatal)} fatal discrepancy(ies) zeroed the affected data types.",
            "Review the flagged data types before relying on the analysis.",
            {s for d in fatal for s in d.get("affected_sources") or ()},
        ))
    if overall_quality < quality_floor:
        recs.append(_recommendation(
            "high", "action_required",
            "Data quality below the analysis floor",
            f"Overall quality {overall_quality}% is below the {quality_floor}% minimum.",
            "Retry later once more sources respond.",
        ))
    divergent = [
        d for d in discrepancies.get("market-data", [])
        if d.get("type") in (DiscrepancyType.SOURCE_DIVERGENCE.value, DiscrepancyType.PRICE_JUMP.value)
    ]
    if divergent:
        recs.append(_recommendation(
            "medium", "data_quality",
            "Price discrepancy across sources",
            "; ".join(d.get("description", "") for d in divergent),
            "The median price is used. Check the divergent providers.",
            {s for d in divergent for s in d.get("affected_sources") or ()},
        ))
    for phase_name, found in discrepancies.items():
        phase_warnings = [d for d in found if d.get("severity") == Severity.WARNING.value]
        if phase_name == "market-data" or not phase_warnings:
            continue
        recs.append(_recommendation(
            "medium", "data_quality",
            f"{phase_name} data issues",
            f"{len(phase_warnings)} warning(s) raised for {phase_name}.",
            f"Use {phase_name} data with caution.",
            {s for d in phase_warnings for s in d.get("affected_sources") or ()},
        ))
    if len(available) < 3:
        recs.append(_recommendation(
            "medium", "data_quality",
            "Incomplete data coverage",
            f"Only {len(available)} of {len(by_data_type)} data types available.",
            "Analysis is limited to the available data types.",
        ))
    if len(unreliable) >= 2:
        recs.append(_recommendation(
            "low", "source_reliability",
            "Multiple source reliability issues",
            f"{len(unreliable)} sources failed or disagreed.",
            "Watch source health scores; tiered fallback covers them meanwhile.",
            unreliable,
        ))
    recs.sort(key=lambda r: PRIORITY_ORDER[r["priority"]])

    return {
        "overall_quality": overall_quality,
        "reliability": reliability_grade(overall_quality),
        "confidence": confidence_level(overall_quality, len(fatal)),
        "can_proceed": not fatal and overall_quality >= quality_floor,
        "by_data_type": by_data_type,
        "unavailable": missing,
        "discrepancies_by_type": discrepancies,
        "fatal_count": len(fatal),
        "warning_count": len(warnings),
        "passed_checks": sorted(passed - failed),
        "failed_checks": sorted(failed),
        "recommendations": recs,
    }
