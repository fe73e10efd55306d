"""
Side-effect catalogue: which document and notification template each
effect kind drives, and the client-facing message text.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from ..models import EffectKind, RejectionReason


@dataclass(frozen=True)
class EffectSpec:
    document_kind: Optional[str]
    template: str


EFFECTS: Dict[EffectKind, EffectSpec] = {
    EffectKind.QUOTE_CONFIRMATION: EffectSpec("quote_confirmation", "quote_approved"),
    EffectKind.UPDATED_QUOTE: EffectSpec("quote_confirmation", "quote_updated"),
    EffectKind.REJECTION_NOTICE: EffectSpec("rejection_notice", "quote_rejected"),
    EffectKind.FLIGHT_CONFIRMATION: EffectSpec("flight_confirmation", "flight_confirmed"),
    EffectKind.PAYMENT_RECEIPT: EffectSpec("receipt", "payment_received"),
    EffectKind.EXPIRY_NOTICE: EffectSpec(None, "quote_expired"),
    EffectKind.RECEIPT_RECEIVED: EffectSpec(None, "receipt_received"),
}

REJECTION_MESSAGES: Dict[RejectionReason, str] = {
    RejectionReason.AIRCRAFT_UNAVAILABLE: "the aircraft is no longer available for this route",
    RejectionReason.ROUTE_NOT_SERVICEABLE: "we are unable to service this route at this time",
    RejectionReason.INVALID_DATES: "the requested dates are not available",
    RejectionReason.PRICING_ISSUE: "there is a pricing discrepancy that cannot be resolved",
    RejectionReason.CAPACITY_EXCEEDED: "the requested number of seats exceeds availability",
    RejectionReason.DEAL_NOT_AVAILABLE: "this empty leg deal is no longer available",
    RejectionReason.NO_PAYMENT_MADE: "payment was not received within the required timeframe",
    RejectionReason.OTHER: "we are unable to proceed with this booking at this time",
}


def _money(value: Optional[str]) -> str:
    if value is None:
        return "TBA"
    return f"${Decimal(value):,.2f} USD"


def _when(value: Optional[str]) -> str:
    if not value:
        return "TBA"
    return datetime.fromisoformat(value).strftime("%d %b %Y %H:%M UTC")


def _flight_lines(payload: Dict[str, Any]) -> str:
    route = payload.get("route") or {}
    return (
        f"📍 Route: {route.get('departure') or 'TBA'} → {route.get('arrival') or 'TBA'}\n"
        f"📅 Departure: {_when(payload.get('departureAt'))}\n"
        f"✈️ Aircraft: {payload.get('aircraft') or 'TBA'}\n"
        f"👥 Seats: {payload.get('seats')}"
    )


def render_message(effect_kind: EffectKind, payload: Dict[str, Any]) -> str:
    """Client-facing notification text for one side effect."""
    ref = payload["referenceNumber"]
    name = (payload.get("client") or {}).get("name") or "Customer"

    if effect_kind in (EffectKind.QUOTE_CONFIRMATION, EffectKind.UPDATED_QUOTE):
        if effect_kind == EffectKind.QUOTE_CONFIRMATION:
            title, intro, label = "QUOTE APPROVED", "Your booking request has been approved!", "Total Price"
        else:
            title, intro, label = "UPDATED QUOTE", "We have updated your quote with the new agreed price.", "New Total Price"
        return (
            f"✈️ *{title} - {ref}*\n\n"
            f"Dear {name},\n\n"
            f"{intro}\n\n"
            f"*Flight Details:*\n{_flight_lines(payload)}\n\n"
            f"*{label}: {_money(payload.get('totalPriceUsd'))}*\n\n"
            f"Please find attached your Quote Confirmation document with bank transfer details.\n\n"
            f"⏰ Payment Deadline: {_when(payload.get('paymentDeadline'))}\n\n"
            f"After payment, please send your payment receipt to this number."
        )

    if effect_kind == EffectKind.REJECTION_NOTICE:
        reason = payload.get("rejectionReason") or RejectionReason.OTHER.value
        text = (
            f"Dear {name},\n\n"
            f"We regret to inform you that your booking request ({ref}) has been declined.\n\n"
            f"*Reason:* Unfortunately, {REJECTION_MESSAGES[RejectionReason(reason)]}."
        )
        if payload.get("rejectionNote"):
            text += f"\n\n*Additional Information:* {payload['rejectionNote']}"
        return text + "\n\nWe apologize for any inconvenience."

    if effect_kind == EffectKind.FLIGHT_CONFIRMATION:
        return (
            f"✅ *BOOKING CONFIRMED - {ref}*\n\n"
            f"Dear {name},\n\n"
            f"Your payment has been received and your flight is confirmed!\n\n"
            f"{_flight_lines(payload)}\n\n"
            f"Please find attached your E-Ticket. Present it at check-in along with a valid ID."
        )

    if effect_kind == EffectKind.PAYMENT_RECEIPT:
        payment = payload.get("payment") or {}
        return (
            f"🧾 *PAYMENT RECEIVED - {ref}*\n\n"
            f"Dear {name},\n\n"
            f"We have received {_money(payment.get('amountUsd') or payload.get('totalPriceUsd'))}. "
            f"Your receipt is attached."
        )

    if effect_kind == EffectKind.EXPIRY_NOTICE:
        return (
            f"⌛ *QUOTE EXPIRED - {ref}*\n\n"
            f"Dear {name},\n\n"
            f"Payment was not received by {_when(payload.get('paymentDeadline'))}, "
            f"so this quote has expired and the seats have been released. "
            f"Contact us if you would still like to fly."
        )

    if effect_kind == EffectKind.RECEIPT_RECEIVED:
        return (
            f"Thank you! Your payment receipt for {ref} has been received. "
            f"Our team will review and confirm shortly."
        )

    raise ValueError(f"No message for {effect_kind}")
