"""
Checkout quotes.

A quote fixes the amounts a shopper will be charged (in cents) for a short
window and signs them with an HMAC so the payment step can trust the figures
it receives back from the browser.
"""

import hashlib
import hmac
import json
import logging
import math
from datetime import datetime, timedelta, timezone

from .config import DEFAULT_CURRENCY, QUOTE_SECRET, QUOTE_TTL_MINUTES, TAX_RATE
from .errors import NotFoundError, PriceNotFound, UpstreamReadError, ValidationError
from .pricing import is_number, parse_instant
from .rule_store import quote_tee_time
from .store import validate_segment

logger = logging.getLogger(__name__)

HOLE_MULTIPLIERS = {9: 0.6, 27: 1.4}
SIGNED_FIELDS = ("currency", "tax_rate", "subtotal_cents", "discount_cents", "tax_cents", "total_cents", "expires_at")


def hole_multiplier(holes):
    return HOLE_MULTIPLIERS.get(holes, 1)


def round_half_up(value):
    # Math.round semantics, matching how the storefront rounds
    return int(math.floor(value + 0.5))


def to_cents(amount):
    return round_half_up(amount * 100)


def iso_millis(dt):
    """UTC timestamp in the browser's toISOString() format."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


# =============================================================================
# COUPONS
# =============================================================================
def validate_coupon(store, code, now=None):
    """Look up an active, unexpired coupon by code (case-insensitive)."""
    now = now or datetime.now(timezone.utc)
    code = validate_segment(code.strip().upper(), "promo code")
    coupon = store.get("coupons", code)
    if coupon is None:
        raise NotFoundError(f"Coupon {code} not found")
    if coupon.get("active") is False:
        raise ValidationError(f"Coupon {code} is inactive")
    valid_until = coupon.get("validUntil")
    if valid_until:
        expiry = parse_instant(valid_until)
        if expiry is None or now > expiry:
            raise ValidationError(f"Coupon {code} has expired")
    if coupon.get("discountType") not in ("percentage", "fixed") or not is_number(coupon.get("discountValue")):
        raise ValidationError(f"Coupon {code} is misconfigured")
    return coupon


def calculate_discount(store, amount, promo_code=None, now=None):
    """Discount in dollars for ``amount``; 0 when there is no usable coupon."""
    if not promo_code:
        return 0
    try:
        coupon = validate_coupon(store, promo_code, now)
    except (NotFoundError, ValidationError, UpstreamReadError) as e:
        logger.info("Coupon %r not applied: %s", promo_code, e)
        return 0

    if coupon["discountType"] == "percentage":
        return amount * (coupon["discountValue"] / 100)
    return min(coupon["discountValue"], amount)


# =============================================================================
# QUOTES
# =============================================================================
def quote_hash(quote, secret=QUOTE_SECRET):
    payload = json.dumps({k: quote[k] for k in SIGNED_FIELDS}, separators=(",", ":"))
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def build_quote(store, request, now=None, secret=QUOTE_SECRET, tax_rate=TAX_RATE, ttl_minutes=QUOTE_TTL_MINUTES):
    """
    Quote a validated ``QuoteRequest``.

    The per-player price comes from the course pricing rules; when the course
    has no pricing configured, a positive client-supplied ``basePrice`` is
    used instead.
    """
    now = now or datetime.now(timezone.utc)
    multiplier = hole_multiplier(request.holes)

    try:
        result = quote_tee_time(store, request.courseId, request.date, request.time, request.players, now)
        subtotal = result["finalPricePerPlayer"] * multiplier * request.players
    except PriceNotFound:
        if request.basePrice is not None and request.basePrice > 0:
            logger.info("No pricing for %s, quoting client base price", request.courseId)
            subtotal = request.basePrice * request.players * multiplier
        else:
            raise PriceNotFound("Pricing unavailable")

    discount = calculate_discount(store, subtotal, request.promoCode, now)

    subtotal_cents = to_cents(subtotal)
    discount_cents = to_cents(discount)
    taxable_cents = max(subtotal_cents - discount_cents, 0)
    tax_cents = round_half_up(taxable_cents * tax_rate)
    quote = {
        "currency": DEFAULT_CURRENCY,
        "tax_rate": tax_rate,
        "subtotal_cents": subtotal_cents,
        "discount_cents": discount_cents,
        "tax_cents": tax_cents,
        "total_cents": taxable_cents + tax_cents,
        "expires_at": iso_millis(now + timedelta(minutes=ttl_minutes)),
        "promo_code": request.promoCode,
    }
    quote["quote_hash"] = quote_hash(quote, secret)
    return quote


def verify_quote(quote, now=None, secret=QUOTE_SECRET):
    """Raise ValidationError unless the quote is untampered and unexpired."""
    now = now or datetime.now(timezone.utc)
    missing = [k for k in SIGNED_FIELDS + ("quote_hash",) if k not in quote]
    if missing:
        raise ValidationError(f"Quote is missing fields: {', '.join(missing)}")
    if not hmac.compare_digest(str(quote["quote_hash"]), quote_hash(quote, secret)):
        raise ValidationError("Quote hash mismatch")
    expires_at = parse_instant(quote["expires_at"])
    if expires_at is None or now > expires_at:
        raise ValidationError("Quote expired")
    return True
