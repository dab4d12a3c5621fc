"""API schemas for pass endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..passes import AccessPass, IssuanceResult


class PassIssueRequest(BaseModel):
    gym_id: int = Field(alias="gymId", gt=0)

    model_config = ConfigDict(populate_by_name=True)


class PassResponse(BaseModel):
    pass_code: str = Field(alias="passCode")
    gym_id: int = Field(alias="gymId")
    status: str
    issued_at: datetime = Field(alias="issuedAt")
    valid_until: datetime = Field(alias="validUntil")
    subscription_tier: str = Field(alias="subscriptionTier")
    pass_cost: Decimal = Field(alias="passCost")
    used_at: Optional[datetime] = Field(alias="usedAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_pass(cls, access_pass: AccessPass) -> "PassResponse":
        return cls(
            pass_code=access_pass.pass_code,
            gym_id=access_pass.facility_id,
            status=access_pass.status.value,
            issued_at=access_pass.issued_at,
            valid_until=access_pass.valid_until,
            subscription_tier=access_pass.tier_at_issuance.value,
            pass_cost=access_pass.cost_at_issuance,
            used_at=access_pass.redeemed_at,
        )


class PassIssueResponse(BaseModel):
    access_pass: PassResponse = Field(alias="pass")
    warnings: List[str] = Field(default_factory=list)
    remaining_visits: int = Field(alias="remainingVisits")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: IssuanceResult) -> "PassIssueResponse":
        return cls(
            access_pass=PassResponse.from_pass(result.access_pass),
            warnings=list(result.warnings),
            remaining_visits=result.remaining_visits,
        )


class PassListResponse(BaseModel):
    passes: List[PassResponse]
