"""
geo_fence.py — Recipient resolution for alert targeting.

Turns an alert's TargetArea into the deduplicated list of users who should
receive it.

═══════════════════════════════════════════════════════════════════════════
TARGETING RULES
═══════════════════════════════════════════════════════════════════════════

    Target type       Recipients
    ─────────────     ─────────────────────────────────────────────────
    barangay_wide     every active user
    specific          active users whose registered sitio is listed
    radius            active users with haversine(center, home) ≤ radius

A radius geo-fence uses the same two-stage filter as every other spatial
query in the system:

    Step 1 — bounding box in SQL (cheap float comparisons, uses index)
    Step 2 — exact haversine on the survivors

The boundary is inclusive: a resident exactly radius_km away is targeted.

Contact gaps are NOT filtered here. A resident with no phone is still a
recipient (counted in total_recipients); the SMS dispatcher simply has
nothing to send them.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from sqlalchemy.ext.asyncio import AsyncSession

from bantay.app.alerts.models import Recipient, TargetArea, TargetType, validate_radius
from bantay.app.core.errors import ValidationError
from bantay.app.users import directory
from bantay.app.users.orm import UserRecord

logger = logging.getLogger(__name__)


def _to_recipient(user: UserRecord) -> Recipient:
    return Recipient(
        user_id=user.id,
        name=user.name,
        phone_number=user.phone_number,
        email=user.email,
        notify_sms=user.notify_sms,
        notify_email=user.notify_email,
        notify_push=user.notify_push,
    )


def _dedupe(users: Iterable[UserRecord]) -> List[Recipient]:
    seen = set()
    out: List[Recipient] = []
    for user in users:
        if user.id in seen:
            continue
        seen.add(user.id)
        out.append(_to_recipient(user))
    return out


async def resolve_recipients(session: AsyncSession, target: TargetArea) -> List[Recipient]:
    """
    Resolve a target area to recipients.

    Parameters
    ----------
    session : AsyncSession
    target : TargetArea
        Validated target; radius bounds are re-checked here because the
        resolver may be called directly.

    Returns
    -------
    list[Recipient]
        Unique by user id, in directory order.

    Raises
    ------
    ValidationError
        Radius outside the allowed range, or radius target without center.
    """
    if target.type == TargetType.BARANGAY_WIDE:
        users = await directory.find_active(session)

    elif target.type == TargetType.SPECIFIC:
        users = await directory.find_active_in_areas(session, target.areas)

    elif target.type == TargetType.RADIUS:
        validate_radius(target.radius_km)
        if target.center is None:
            raise ValidationError(
                "Radius targeting needs a center point",
                field="target_area.center",
            )
        users = await directory.find_active_within_radius(
            session, target.center, target.radius_km,
        )

    else:
        raise ValidationError(f"Unknown target type: {target.type}", field="target_area.type")

    recipients = _dedupe(users)
    logger.info(
        "Geo-fence (%s): %d recipients resolved",
        target.type.value, len(recipients),
        extra={"recipient_count": len(recipients)},
    )
    return recipients
