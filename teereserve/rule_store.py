"""
Course pricing documents in the document store.

Layout (one collection per line)::

    pricing                               {courseId, lastUpdated, updatedBy}
    pricing/<courseId>/baseProducts       "default" -> {basePrice, currency, ...}
    pricing/<courseId>/priceRules
    pricing/<courseId>/seasons
    pricing/<courseId>/timeBands
    pricing/<courseId>/specialOverrides
    courses                               public course docs (basePrice, pricingBands)
"""

import logging
from datetime import datetime, timezone

from .config import DEFAULT_CURRENCY
from .dedupe import dedupe_price_rules, dedupe_price_rules_by_name, dedupe_time_bands
from .errors import PriceNotFound, TeeReserveError, UpstreamReadError, ValidationError
from .pricing import (
    base_price_of,
    build_pricing_bands,
    calculate_price,
    is_number,
    min_band_price,
    resolve_min_price,
)
from .store import validate_segment

logger = logging.getLogger(__name__)

PRICING_COLLECTIONS = ("seasons", "timeBands", "priceRules", "specialOverrides")
BASE_PRODUCT_ID = "default"


def pricing_path(course_id, collection):
    return f"pricing/{course_id}/{collection}"


# =============================================================================
# READS
# =============================================================================
def get_base_product(store, course_id):
    return store.get(pricing_path(course_id, "baseProducts"), BASE_PRODUCT_ID)


def list_rules(store, course_id):
    return store.list(pricing_path(course_id, "priceRules"))


def list_active_rules(store, course_id):
    """Rules not switched off. Soft-deleted rules carry ``active: false``."""
    return [r for r in list_rules(store, course_id) if r.get("active") is not False]


def get_course(store, course_id):
    return store.get("courses", course_id)


def get_course_fallback_price(store, course_id):
    course = get_course(store, course_id)
    if course and is_number(course.get("basePrice")):
        return course["basePrice"]
    return None


def load_pricing_data(store, course_id):
    """Every pricing collection for a course. Unreadable collections come back empty."""
    data = {}
    for name in PRICING_COLLECTIONS:
        try:
            data[name] = store.list(pricing_path(course_id, name))
        except UpstreamReadError as e:
            logger.warning("Pricing collection %s unavailable for %s: %s", name, course_id, e)
            data[name] = []
    try:
        data["baseProduct"] = get_base_product(store, course_id)
    except UpstreamReadError as e:
        logger.warning("Base product unavailable for %s: %s", course_id, e)
        data["baseProduct"] = None
    return data


# =============================================================================
# PRICES
# =============================================================================
def resolve_base_price(store, course_id):
    """Stored base product price, else the course's flat basePrice, else None."""
    base_price = None
    try:
        base_price = base_price_of(get_base_product(store, course_id))
    except UpstreamReadError as e:
        logger.warning("Base product read failed for %s, trying course fallback: %s", course_id, e)

    if base_price is None:
        try:
            base_price = get_course_fallback_price(store, course_id)
        except UpstreamReadError as e:
            logger.warning("Course read failed for %s: %s", course_id, e)
    return base_price


def get_min_price(store, course_id, now=None):
    """The "starting from" price payload for a course.

    Raises ValidationError for a bad id and PriceNotFound when no base price
    exists. A failed rule read degrades to the plain base price.
    """
    if not course_id:
        raise ValidationError("Missing courseId")
    validate_segment(course_id, "courseId")

    base_price = resolve_base_price(store, course_id)
    if base_price is None:
        raise PriceNotFound("Base price not found for course")

    try:
        rules = list_active_rules(store, course_id)
    except UpstreamReadError as e:
        logger.warning("Price rules unavailable for %s, returning base price: %s", course_id, e)
        rules = []

    return {
        "courseId": course_id,
        "currency": DEFAULT_CURRENCY,
        "minPrice": resolve_min_price(base_price, rules, now),
    }


def quote_tee_time(store, course_id, day, time_str, players, now=None):
    validate_segment(course_id, "courseId")
    return calculate_price(load_pricing_data(store, course_id), course_id, day, time_str, players, now)


def get_public_pricing(store, course_id):
    """Public course pricing (bands and derived min price). Never raises."""
    empty = {"courseId": course_id, "basePrice": None, "pricingBands": [], "currency": DEFAULT_CURRENCY, "minPrice": None}
    try:
        validate_segment(course_id, "courseId")
        course = get_course(store, course_id)
    except TeeReserveError as e:
        logger.warning("Public pricing unavailable for %s: %s", course_id, e)
        return empty
    if not course:
        return empty

    base_price = course["basePrice"] if is_number(course.get("basePrice")) else None
    bands = course.get("pricingBands") if isinstance(course.get("pricingBands"), list) else []
    currency = course.get("currency") if isinstance(course.get("currency"), str) else DEFAULT_CURRENCY
    return {
        "courseId": course_id,
        "basePrice": base_price,
        "pricingBands": bands,
        "currency": currency,
        "minPrice": min_band_price(bands, base_price),
    }


# =============================================================================
# ADMIN WRITES
# =============================================================================
def _now_iso(now=None):
    return (now or datetime.now(timezone.utc)).isoformat()


def save_pricing_data(store, payload, updated_by="admin", now=None):
    """
    Persist a validated ``SavePricingRequest``.

    Each collection present in the payload is synced: stored documents missing
    from the payload are deleted, the rest are upserted. When a base product is
    saved its price, and the public bands derived from the payload, are copied
    onto the course document.
    """
    course_id = validate_segment(payload.courseId, "courseId")
    timestamp = _now_iso(now)

    collections = {name: getattr(payload, name) for name in PRICING_COLLECTIONS}
    for name, items in collections.items():
        for item in items or []:
            if item.courseId != course_id:
                raise ValidationError(f"{name} item {item.id} belongs to course {item.courseId}")
    if payload.baseProduct and payload.baseProduct.courseId != course_id:
        raise ValidationError("baseProduct belongs to another course")

    with store.batch() as batch:
        for name, items in collections.items():
            if items is None:
                continue
            path = pricing_path(course_id, name)
            payload_ids = {item.id for item in items}
            for existing in store.list(path):
                if existing["id"] not in payload_ids:
                    batch.delete(path, existing["id"])
            for item in items:
                batch.set(path, item.id, {**item.model_dump(exclude_none=True), "updatedAt": timestamp}, merge=True)

        if payload.baseProduct:
            base_product = payload.baseProduct.model_dump(exclude_none=True)
            batch.set(
                pricing_path(course_id, "baseProducts"),
                BASE_PRODUCT_ID,
                {**base_product, "updatedAt": timestamp},
                merge=True,
            )

            course_update = {"updatedAt": timestamp, "basePrice": base_product["basePrice"]}
            if payload.timeBands is not None:
                course_update["pricingBands"] = build_pricing_bands(
                    [b.model_dump() for b in payload.timeBands],
                    [r.model_dump() for r in payload.priceRules or []],
                    base_product["basePrice"],
                )
            batch.set("courses", course_id, course_update, merge=True)

        batch.set("pricing", course_id, {"courseId": course_id, "lastUpdated": timestamp, "updatedBy": updated_by}, merge=True)

    saved = {name: len(items or []) for name, items in collections.items()}
    saved["baseProduct"] = 1 if payload.baseProduct else 0
    logger.info("Saved pricing for %s: %s", course_id, saved)
    return {"courseId": course_id, "timestamp": timestamp, "savedItems": saved}


def dedupe_pricing(store, course_id, kind="all", strategy="highest_priority"):
    """Delete duplicate bands and/or rules for a course. Returns how many went."""
    validate_segment(course_id, "courseId")
    bands_path = pricing_path(course_id, "timeBands")
    rules_path = pricing_path(course_id, "priceRules")

    doomed = []
    if kind in ("timeBands", "all"):
        doomed += [(bands_path, i) for i in dedupe_time_bands(course_id, store.list(bands_path))]
    if kind in ("priceRules", "all"):
        doomed += [(rules_path, i) for i in dedupe_price_rules(course_id, store.list(rules_path))]
    if kind == "priceRulesByName":
        doomed += [(rules_path, i) for i in dedupe_price_rules_by_name(store.list(rules_path), strategy)]

    if doomed:
        with store.batch() as batch:
            for path, doc_id in doomed:
                batch.delete(path, doc_id)
        logger.info("Removed %d duplicate pricing documents for %s", len(doomed), course_id)
    return len(doomed)
