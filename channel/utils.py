# channel/utils.py
import logging
import secrets
from decimal import Decimal, ROUND_HALF_UP

logger = logging.getLogger(__name__)

PAISE = Decimal("0.01")


def generate_unique_referral_code(prefix: str = "CP") -> str:
    """
    Generates a unique referral code like 'CP-4F8A2C'.
    """
    from .models import ChannelPartner

    while True:
        code = f"{prefix}-{secrets.token_hex(3).upper()}"  # 6 hex chars
        if not ChannelPartner.objects.filter(referral_code=code).exists():
            return code


def compute_commission(amount, rate) -> Decimal:
    """amount x rate / 100, in paise."""
    if not amount or not rate:
        return Decimal("0.00")
    return (Decimal(amount) * Decimal(rate) / Decimal("100")).quantize(PAISE, rounding=ROUND_HALF_UP)


def attribute_booking(booking):
    """
    Link the booking to every partner attribution of its lead and fix the commission.
    Attributions already tied to a booking are left as they are.
    """
    from .models import ChannelPartnerLead

    links = (
        ChannelPartnerLead.objects
        .select_related("partner")
        .filter(lead_id=booking.lead_id, booking__isnull=True)
    )
    count = 0
    for link in links:
        link.booking = booking
        link.commission_amount = compute_commission(booking.final_amount, link.partner.commission_rate)
        link.save(update_fields=["booking", "commission_amount", "updated_at"])
        count += 1
        logger.info(
            "Commission %s for partner %s on booking %s",
            link.commission_amount, link.partner_id, booking.pk,
        )
    return count
