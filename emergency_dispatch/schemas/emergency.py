from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from emergency_dispatch.models.assessment import (
    AssessmentContext,
    CustomerType,
    EmergencyAssessment,
    Language,
)
from emergency_dispatch.models.dispatch import CallDetails, DispatchResult


class AssessTurnRequest(BaseModel):
    """Assess turn request schema"""
    text: str
    industry_code: str = Field(min_length=1)
    timestamp: Optional[datetime] = None
    declared_language: Optional[Language] = None
    ambient_temperature_f: Optional[float] = None
    water_damage: bool = False
    safety_hazard: bool = False
    power_outage: bool = False
    customer_type: CustomerType = CustomerType.RESIDENTIAL
    organization_id: Optional[str] = None
    call: Optional[CallDetails] = None

    def to_context(self) -> AssessmentContext:
        return AssessmentContext(
            industry_code=self.industry_code,
            ambient_temperature_f=self.ambient_temperature_f,
            water_damage=self.water_damage,
            safety_hazard=self.safety_hazard,
            power_outage=self.power_outage,
            customer_type=self.customer_type,
            observed_at=self.timestamp,
            declared_language=self.declared_language,
        )

    @property
    def wants_dispatch(self) -> bool:
        return self.organization_id is not None and self.call is not None


class AssessTurnResponse(BaseModel):
    """Assess turn response schema"""
    assessment: EmergencyAssessment
    escalation_required: bool
    notifications_sent: bool = False
    dispatch_result: Optional[DispatchResult] = None
    error: Optional[str] = None
