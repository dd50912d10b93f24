"""
Duplicate detection for pricing collections.

Repeated admin saves and import scripts leave copies of the same band or rule
behind. Each function here takes the documents of one collection and returns
the ids that should be deleted; callers decide where the deletion happens.
"""

from .pricing import parse_instant, to_number

# Puerto Los Cabos publishes exactly these three bands; anything else is stale.
CANONICAL_BANDS = {
    "puerto-los-cabos": [
        ("07:00", "11:50"),
        ("12:00", "13:20"),
        ("13:30", "19:00"),
    ],
}

STRATEGIES = ("highest_priority", "latest")


def _str(value):
    return "" if value is None else str(value)


def _js_str(value):
    # Stored booleans/numbers are keyed the way the admin UI serialises them.
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return _str(value)


def _updated_ts(doc):
    parsed = parse_instant(doc.get("updatedAt")) if doc.get("updatedAt") else None
    return parsed.timestamp() if parsed else 0


def _priority(doc):
    return to_number(doc.get("priority")) or 0


def band_key(band):
    return "|".join([(band.get("label") or "").strip().lower(), _str(band.get("startTime")), _str(band.get("endTime"))])


def rule_key(rule):
    parts = [
        (rule.get("name") or "").strip().lower(),
        rule.get("seasonId") or "",
        rule.get("timeBandId") or "",
        ",".join(_js_str(d) for d in (rule.get("dow") or [])),
        _js_str(rule.get("leadTimeMin")),
        _js_str(rule.get("leadTimeMax")),
        _js_str(rule.get("occupancyMin")),
        _js_str(rule.get("occupancyMax")),
        _js_str(rule.get("playersMin")),
        _js_str(rule.get("playersMax")),
        _js_str(rule.get("priceType")),
        _js_str(rule.get("priceValue")),
        _js_str(rule.get("priority")),
        _js_str(rule.get("active")),
        rule.get("effectiveFrom") or "",
        rule.get("effectiveTo") or "",
        _js_str(rule.get("minPrice")),
        _js_str(rule.get("maxPrice")),
        _js_str(rule.get("roundTo")),
    ]
    return "|".join(parts)


def _first_per_key(docs, key_func):
    seen = set()
    keep = set()
    for doc in docs:
        key = key_func(doc)
        if key not in seen:
            seen.add(key)
            keep.add(doc["id"])
    return keep


def dedupe_time_bands(course_id, bands):
    """Ids of duplicate time bands (same label and hours)."""
    if course_id in CANONICAL_BANDS:
        keep = set()
        for start, end in CANONICAL_BANDS[course_id]:
            match = next((b for b in bands if b.get("startTime") == start and b.get("endTime") == end), None)
            if match:
                keep.add(match["id"])
    else:
        keep = _first_per_key(bands, band_key)
    return [b["id"] for b in bands if b["id"] not in keep]


def _best_by_priority(rules):
    # Highest priority, ties broken by the most recent update.
    return max(rules, key=lambda r: (_priority(r), _updated_ts(r)))


def dedupe_price_rules(course_id, rules):
    """Ids of duplicate price rules (identical in every pricing field)."""
    if course_id in CANONICAL_BANDS:
        keep = {r["id"] for r in rules if not r.get("timeBandId")}
        by_band = {}
        for rule in rules:
            if rule.get("timeBandId"):
                by_band.setdefault(rule["timeBandId"], []).append(rule)
        for band_rules in by_band.values():
            keep.add(_best_by_priority(band_rules)["id"])
    else:
        keep = _first_per_key(rules, rule_key)
    return [r["id"] for r in rules if r["id"] not in keep]


def dedupe_price_rules_by_name(rules, strategy="highest_priority"):
    """Ids of price rules sharing a name, keeping one per name.

    ``highest_priority`` keeps the highest priority (latest update on ties);
    ``latest`` keeps the most recently updated.
    """
    groups = {}
    for rule in rules:
        groups.setdefault((rule.get("name") or "").strip().lower(), []).append(rule)

    keep = set()
    for group in groups.values():
        if strategy == "latest":
            chosen = group[0]
            for rule in group[1:]:
                if _updated_ts(rule) > _updated_ts(chosen):
                    chosen = rule
        else:
            chosen = group[0]
            for rule in group[1:]:
                if (_priority(rule), _updated_ts(rule)) > (_priority(chosen), _updated_ts(chosen)):
                    chosen = rule
        keep.add(chosen["id"])
    return [r["id"] for r in rules if r["id"] not in keep]
