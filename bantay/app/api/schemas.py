"""
Pydantic schemas for the alert, rescue and directory APIs.

Separated from the route handlers so they are reusable across the
codebase (WebSocket handlers, tests). Enum-valued fields are accepted as
plain strings and checked by the domain layer, which reports bad values
in the same error envelope as every other validation failure.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from bantay.app.alerts.models import AlertChannel, TargetArea
from bantay.app.spatial.radius_utils import Coordinate


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class CoordinateInput(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[9.8012])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[123.7905])

    def to_domain(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class TargetAreaInput(BaseModel):
    """
    barangay_wide needs nothing else; specific needs ``areas``;
    radius needs ``center`` and ``radius_km``.
    """
    type: str = Field("barangay_wide", examples=["specific"])
    areas: List[str] = Field(default_factory=list, examples=[["Sitio Centro", "Sitio Baybay"]])
    center: Optional[CoordinateInput] = None
    radius_km: Optional[float] = Field(None, examples=[2.5])

    def to_domain(self) -> TargetArea:
        return TargetArea(
            type=self.type,
            areas=list(self.areas),
            center=self.center.to_domain() if self.center else None,
            radius_km=self.radius_km,
        )


class EvacuationCenterInput(BaseModel):
    name: str = Field(..., examples=["Malagutay Elementary School"])
    address: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0)


class EvacuationInput(BaseModel):
    required: bool = False
    centers: List[EvacuationCenterInput] = Field(default_factory=list)
    routes: List[str] = Field(default_factory=list)


class InstructionsInput(BaseModel):
    immediate: List[str] = Field(default_factory=list, examples=[["Move to higher ground"]])
    preparation: List[str] = Field(default_factory=list, examples=[["Prepare a go-bag"]])
    evacuation: Optional[EvacuationInput] = None

    def to_domain(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class AlertCreateRequest(BaseModel):
    title: str = Field(..., examples=["Flood Warning: Malagutay River"])
    message: str = Field(..., examples=["River level rising. Residents near the riverbank prepare to evacuate."])
    alert_type: str = Field(..., examples=["flood"])
    severity: str = Field(..., examples=["warning"])
    expires_at: datetime = Field(..., description="Timezone-aware ISO 8601 timestamp")
    target_area: TargetAreaInput = Field(default_factory=TargetAreaInput)
    instructions: Optional[InstructionsInput] = None
    channels: Optional[List[str]] = Field(
        None, examples=[["sms", "email", "push", "web"]],
        description="Defaults to every channel",
    )


class AlertUpdateRequest(BaseModel):
    """Partial update of a draft; only fields that are sent are changed."""
    title: Optional[str] = None
    message: Optional[str] = None
    alert_type: Optional[str] = None
    severity: Optional[str] = None
    expires_at: Optional[datetime] = None
    target_area: Optional[TargetAreaInput] = None
    instructions: Optional[InstructionsInput] = None
    channels: Optional[List[str]] = None

    def to_changes(self) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if name == "target_area":
                value = value.to_domain() if value is not None else TargetArea()
            elif name == "instructions":
                value = value.to_domain() if value is not None else {}
            elif name == "channels" and value is None:
                value = list(AlertChannel)
            changes[name] = value
        return changes


class ExtendRequest(BaseModel):
    expires_at: datetime = Field(..., description="New timezone-aware expiry")
    reason: Optional[str] = Field(None, examples=["River still above critical level"])


class DeactivateRequest(BaseModel):
    reason: Optional[str] = Field(None, examples=["Water level back to normal"])


class AcknowledgeRequest(BaseModel):
    location: Optional[CoordinateInput] = None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserCreateRequest(BaseModel):
    name: str = Field(..., examples=["Juan Dela Cruz"])
    role: str = Field("resident", examples=["resident"])
    phone_number: Optional[str] = Field(None, examples=["09171234567"])
    email: Optional[str] = Field(None, examples=["juan@example.com"])
    area: Optional[str] = Field(None, examples=["Sitio Centro"])
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0)
    notify_sms: bool = True
    notify_email: bool = True
    notify_push: bool = True


# ---------------------------------------------------------------------------
# Rescue requests
# ---------------------------------------------------------------------------

class PersonsAffectedInput(BaseModel):
    adults: int = Field(0, ge=0)
    children: int = Field(0, ge=0)
    seniors: int = Field(0, ge=0)
    disabled: int = Field(0, ge=0)


class MedicalInfoInput(BaseModel):
    has_injuries: bool = False
    injury_description: Optional[str] = None
    has_chronic_conditions: bool = False
    medication_needed: Optional[str] = None


class RescueCreateRequest(BaseModel):
    contact_name: str = Field(..., examples=["Maria Santos"])
    contact_phone: str = Field(..., examples=["09181234567"])
    alternate_contact_name: Optional[str] = None
    alternate_contact_phone: Optional[str] = None
    location: CoordinateInput
    street: Optional[str] = None
    sitio: Optional[str] = Field(None, examples=["Sitio Baybay"])
    landmarks: Optional[str] = Field(None, examples=["Beside the chapel"])
    emergency_type: str = Field(..., examples=["trapped"])
    severity: str = Field("medium", examples=["high"])
    description: str = Field(..., examples=["Family of five on the roof, water rising"])
    priority: int = Field(3, examples=[4])
    persons_affected: PersonsAffectedInput = Field(default_factory=PersonsAffectedInput)
    medical_info: MedicalInfoInput = Field(default_factory=MedicalInfoInput)


class RescueStatusRequest(BaseModel):
    status: str = Field(..., examples=["dispatched"])
    notes: Optional[str] = None
    outcome: Optional[str] = Field(None, examples=["successful"])
    final_notes: Optional[str] = None


class RescueAssignRequest(BaseModel):
    responder_id: str
    team: Optional[str] = Field(None, examples=["BDRRMC Team Alpha"])
    estimated_arrival: Optional[datetime] = None


class RescueNoteRequest(BaseModel):
    content: str = Field(..., examples=["Boat dispatched from barangay hall"])
    is_internal: bool = False
