"""
Green fee pricing.

Two entry points share the same rule semantics:

* ``resolve_min_price`` evaluates every currently effective rule on its own
  against the base price and keeps the cheapest candidate. This is the
  "starting from" price shown on course cards, so season, time band and
  priority are deliberately not consulted.
* ``calculate_price`` prices one concrete tee time. Rules are narrowed to the
  season, weekday and time band of the slot and applied one after another in
  priority order, after special overrides (holidays, tournaments, closures)
  have had their say.
"""

import logging
import math
from datetime import date, datetime, timezone

from .errors import PriceNotFound, TeeTimeBlocked, ValidationError

logger = logging.getLogger(__name__)

PRICE_TYPES = ("fixed", "delta", "multiplier")


# =============================================================================
# VALUE COERCION
# =============================================================================
def is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def to_number(value):
    """Best-effort numeric read of a stored field; None when unusable."""
    if is_number(value):
        return value
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def round_to_step(value, step):
    """Round half-up to the nearest multiple of ``step``."""
    return math.floor(value / step + 0.5) * step


def parse_instant(value):
    """Parse an ISO date or datetime into an aware UTC datetime, or None."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_day(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def time_to_minutes(value):
    """'HH:MM' -> minutes past midnight, None when malformed."""
    try:
        hours, minutes = str(value).split(":")[:2]
        return int(hours) * 60 + int(minutes)
    except (ValueError, TypeError):
        return None


def is_time_in_range(time_str, start_time=None, end_time=None):
    if not start_time or not end_time:
        return True
    t, start, end = time_to_minutes(time_str), time_to_minutes(start_time), time_to_minutes(end_time)
    if t is None or start is None or end is None:
        return False
    return start <= t <= end


def base_price_of(base_product):
    """Base green fee of a stored base product.

    ``greenFeeBaseUsd`` is what the pricing engine writes, ``basePrice`` is
    what the admin save endpoint writes; either may be present.
    """
    if not base_product:
        return None
    if is_number(base_product.get("greenFeeBaseUsd")):
        return base_product["greenFeeBaseUsd"]
    if is_number(base_product.get("basePrice")):
        return base_product["basePrice"]
    return None


def _utc(now):
    if now is None:
        return datetime.now(timezone.utc)
    return parse_instant(now)


def is_in_effect(rule, now):
    """True when ``now`` lies inside the rule's effectiveFrom/effectiveTo window.

    Both bounds are inclusive. A bound that cannot be parsed never matches.
    """
    effective_from = rule.get("effectiveFrom")
    if effective_from:
        start = parse_instant(effective_from)
        if start is None or now < start:
            return False
    effective_to = rule.get("effectiveTo")
    if effective_to:
        end = parse_instant(effective_to)
        if end is None or now > end:
            return False
    return True


# =============================================================================
# MINIMUM ("STARTING FROM") PRICE
# =============================================================================
def rule_candidate(base_price, rule):
    """Price a single rule in isolation against the base price."""
    price_type = rule.get("priceType")
    value = to_number(rule.get("priceValue"))

    if price_type == "fixed":
        candidate = value or base_price
    elif price_type == "delta":
        candidate = base_price + (value or 0)
    elif price_type == "multiplier":
        candidate = base_price * (value or 1)
    else:
        candidate = base_price

    if is_number(rule.get("minPrice")):
        candidate = max(candidate, rule["minPrice"])
    if is_number(rule.get("maxPrice")):
        candidate = min(candidate, rule["maxPrice"])

    round_to = rule.get("roundTo")
    if is_number(round_to) and round_to > 0:
        candidate = round_to_step(candidate, round_to)

    return candidate


def resolve_min_price(base_price, rules, now=None):
    """Cheapest bookable price across the active, in-window rules.

    Rules are independent, so the result does not depend on their order.
    Never negative.
    """
    if not is_number(base_price):
        raise ValueError(f"base_price must be a finite number, got {base_price!r}")
    now = _utc(now)

    min_price = base_price
    for rule in rules:
        if rule.get("active") is False:
            continue
        if not is_in_effect(rule, now):
            continue
        candidate = rule_candidate(base_price, rule)
        if candidate < min_price:
            min_price = candidate

    return max(0, to_number(min_price) or 0)


# =============================================================================
# TEE TIME PRICE
# =============================================================================
def find_special_override(overrides, course_id, day, time_str):
    matches = []
    for override in overrides:
        if override.get("courseId") != course_id or not override.get("active"):
            continue
        start, end = parse_day(override.get("startDate")), parse_day(override.get("endDate"))
        if start is None or end is None or not start <= day <= end:
            continue
        if not is_time_in_range(time_str, override.get("startTime"), override.get("endTime")):
            continue
        matches.append(override)
    if not matches:
        return None
    return max(matches, key=lambda o: to_number(o.get("priority")) or 0)


def find_season(seasons, day):
    matches = []
    for season in seasons:
        if not season.get("active"):
            continue
        start, end = parse_day(season.get("startDate")), parse_day(season.get("endDate"))
        if start is not None and end is not None and start <= day <= end:
            matches.append(season)
    if not matches:
        return None
    return max(matches, key=lambda s: to_number(s.get("priority")) or 0)


def find_time_band(time_bands, time_str):
    for band in time_bands:
        if band.get("active") and is_time_in_range(time_str, band.get("startTime"), band.get("endTime")):
            return band
    return None


def get_applicable_rules(data, day, time_str, now):
    season = find_season(data.get("seasons") or [], day)
    band = find_time_band(data.get("timeBands") or [], time_str)
    # JS-style weekday: 0 = Sunday
    dow = day.isoweekday() % 7

    applicable = []
    for rule in data.get("priceRules") or []:
        if not rule.get("active"):
            continue
        if not is_in_effect(rule, now):
            continue
        if rule.get("seasonId") and rule["seasonId"] != (season or {}).get("id"):
            continue
        if rule.get("dow") is not None and dow not in rule["dow"]:
            continue
        if rule.get("timeBandId") and rule["timeBandId"] != (band or {}).get("id"):
            continue
        applicable.append(rule)

    return sorted(applicable, key=lambda r: to_number(r.get("priority")) or 0, reverse=True)


def calculate_price(data, course_id, day, time_str, players, now=None):
    """
    Price a specific tee time for ``players`` golfers.

    ``data`` is the course's pricing document set as returned by
    ``rule_store.load_pricing_data``: seasons, timeBands, priceRules,
    specialOverrides and baseProduct.

    Order of application:
        1. Special overrides (blocks raise TeeTimeBlocked, price overrides win outright)
        2. Base product green fee
        3. Matching rules, highest priority first, each applied to the running price
    """
    now = _utc(now)
    tee_day = parse_day(day)
    if tee_day is None or time_to_minutes(time_str) is None:
        raise ValidationError("Invalid date or time")

    override = find_special_override(data.get("specialOverrides") or [], course_id, tee_day, time_str)
    if override:
        if override.get("overrideType") == "block":
            raise TeeTimeBlocked(f"Tee time blocked by special override '{override.get('name', '')}'")
        override_price = to_number(override.get("priceValue"))
        if override.get("overrideType") == "price" and override_price:
            return {
                "basePrice": override_price,
                "appliedRules": [{
                    "ruleId": override.get("id"),
                    "ruleName": override.get("name"),
                    "ruleType": "fixed",
                    "value": override_price,
                    "resultPrice": override_price,
                }],
                "finalPricePerPlayer": override_price,
                "totalPrice": override_price * players,
                "players": players,
                "calculationTimestamp": now.isoformat(),
            }

    base_price = base_price_of(data.get("baseProduct"))
    if base_price is None:
        raise PriceNotFound(f"Base product not found for course {course_id}")

    current = base_price
    applied = []
    for rule in get_applicable_rules(data, tee_day, time_str, now):
        value = to_number(rule.get("priceValue"))
        if value is None:
            logger.warning("Skipping rule %s with non-numeric priceValue", rule.get("id"))
            continue

        price_type = rule.get("priceType")
        if price_type == "fixed":
            current = value
        elif price_type == "delta":
            current += value
        elif price_type == "multiplier":
            current *= value

        min_price, max_price = rule.get("minPrice"), rule.get("maxPrice")
        if is_number(min_price) and min_price and current < min_price:
            current = min_price
        if is_number(max_price) and max_price and current > max_price:
            current = max_price
        round_to = rule.get("roundTo")
        if is_number(round_to) and round_to > 0:
            current = round_to_step(current, round_to)

        applied.append({
            "ruleId": rule.get("id"),
            "ruleName": rule.get("name"),
            "ruleType": price_type,
            "value": value,
            "resultPrice": current,
        })

    return {
        "basePrice": base_price,
        "appliedRules": applied,
        "finalPricePerPlayer": current,
        "totalPrice": current * players,
        "players": players,
        "calculationTimestamp": now.isoformat(),
    }


# =============================================================================
# PUBLIC PRICE BANDS
# =============================================================================
def build_pricing_bands(time_bands, price_rules, base_price):
    """Display bands for the public course page, ordered by start time.

    A band shows the first active fixed rule attached to it, or the base price.
    """
    bands = sorted((b for b in time_bands if b.get("active")), key=lambda b: b.get("startTime") or "")
    public = []
    for band in bands:
        rule = next(
            (r for r in price_rules
             if r.get("active") and r.get("timeBandId") == band.get("id") and r.get("priceType") == "fixed"),
            None,
        )
        public.append({
            "label": band.get("label"),
            "startTime": band.get("startTime"),
            "endTime": band.get("endTime"),
            "price": rule["priceValue"] if rule else (base_price or 0),
        })
    return public


def min_band_price(pricing_bands, base_price=None):
    prices = [b.get("price") for b in pricing_bands if isinstance(b, dict) and is_number(b.get("price"))]
    if prices:
        return min(prices)
    if is_number(base_price):
        return base_price
    return None
