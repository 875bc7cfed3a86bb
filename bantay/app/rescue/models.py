"""
models.py — Rescue request enums, transition table and input validation.

═══════════════════════════════════════════════════════════════════════════
STATUS TRANSITIONS
═══════════════════════════════════════════════════════════════════════════

    pending ──▶ acknowledged ──▶ dispatched ──▶ in_progress ──▶ completed
       │             │               │               │
       │             └───────────────┼──▶ in_progress│
       │                             └───────────────┼──▶ completed
       └──────────── any non-terminal ───────────────┴──▶ cancelled

    completed and cancelled are terminal.
    Assigning a responder moves pending → acknowledged.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from bantay.app.core.errors import ValidationError
from bantay.app.spatial.radius_utils import Coordinate
from bantay.app.users.directory import PHONE_PATTERN

DESCRIPTION_MAX_LENGTH = 1000


class EmergencyType(str, Enum):
    FLOOD      = "flood"
    MEDICAL    = "medical"
    TRAPPED    = "trapped"
    EVACUATION = "evacuation"
    FIRE       = "fire"
    LANDSLIDE  = "landslide"
    OTHER      = "other"


class RescueSeverity(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class RescueStatus(str, Enum):
    PENDING      = "pending"
    ACKNOWLEDGED = "acknowledged"
    DISPATCHED   = "dispatched"
    IN_PROGRESS  = "in_progress"
    COMPLETED    = "completed"
    CANCELLED    = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RescueStatus.COMPLETED, RescueStatus.CANCELLED)


class CompletionOutcome(str, Enum):
    SUCCESSFUL   = "successful"
    PARTIAL      = "partial"
    UNSUCCESSFUL = "unsuccessful"
    REFERRED     = "referred"


ALLOWED_TRANSITIONS = {
    RescueStatus.PENDING: {
        RescueStatus.ACKNOWLEDGED, RescueStatus.DISPATCHED, RescueStatus.CANCELLED,
    },
    RescueStatus.ACKNOWLEDGED: {
        RescueStatus.DISPATCHED, RescueStatus.IN_PROGRESS, RescueStatus.CANCELLED,
    },
    RescueStatus.DISPATCHED: {
        RescueStatus.IN_PROGRESS, RescueStatus.COMPLETED, RescueStatus.CANCELLED,
    },
    RescueStatus.IN_PROGRESS: {
        RescueStatus.COMPLETED, RescueStatus.CANCELLED,
    },
    RescueStatus.COMPLETED: set(),
    RescueStatus.CANCELLED: set(),
}


def can_transition(current: RescueStatus, requested: RescueStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def parse_choice(enum_cls, value: Any, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(
            f"{field_name} must be one of: {allowed}", field=field_name, value=value,
        ) from None


@dataclass
class RescueRequestInput:
    """Fields a resident submits with a rescue request."""
    contact_name: str
    contact_phone: str
    latitude: float
    longitude: float
    emergency_type: Any
    description: str
    severity: Any = RescueSeverity.MEDIUM
    priority: int = 3
    street: Optional[str] = None
    sitio: Optional[str] = None
    landmarks: Optional[str] = None
    alternate_contact_name: Optional[str] = None
    alternate_contact_phone: Optional[str] = None
    adults: int = 0
    children: int = 0
    seniors: int = 0
    disabled: int = 0
    has_injuries: bool = False
    injury_description: Optional[str] = None
    has_chronic_conditions: bool = False
    medication_needed: Optional[str] = None

    def validate(self) -> "RescueRequestInput":
        self.contact_name = (self.contact_name or "").strip()
        if not self.contact_name:
            raise ValidationError("Contact name is required", field="contact_name")
        if not self.contact_phone or not PHONE_PATTERN.match(self.contact_phone):
            raise ValidationError(
                "Please enter a valid Philippine phone number", field="contact_phone",
            )
        if self.alternate_contact_phone and not PHONE_PATTERN.match(self.alternate_contact_phone):
            raise ValidationError(
                "Please enter a valid Philippine phone number", field="alternate_contact_phone",
            )
        try:
            Coordinate(self.latitude, self.longitude)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid coordinates provided", field="location") from exc

        self.emergency_type = parse_choice(EmergencyType, self.emergency_type, "emergency_type")
        self.severity = parse_choice(RescueSeverity, self.severity, "severity")

        self.description = (self.description or "").strip()
        if not self.description:
            raise ValidationError("Description is required", field="description")
        if len(self.description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters",
                field="description",
            )

        for name in ("adults", "children", "seniors", "disabled"):
            if getattr(self, name) < 0:
                raise ValidationError(f"Number of {name} cannot be negative", field=name)
        if not 1 <= self.priority <= 5:
            raise ValidationError("Priority must be between 1 and 5", field="priority")
        return self

    def persons(self) -> Dict[str, int]:
        return {
            "adults": self.adults,
            "children": self.children,
            "seniors": self.seniors,
            "disabled": self.disabled,
        }
