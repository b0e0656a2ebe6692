"""
Pydantic schemas for period-data endpoints.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints, field_validator

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class PeriodRecordIn(BaseModel):
    """
    One item line of an apartment's billing period, as submitted for upsert.

    `apt_id` is accepted as an alias of `apartment_id`.
    """

    model_config = ConfigDict(extra="ignore")

    apartment_id: int = Field(..., gt=0, validation_alias=AliasChoices("apartment_id", "apt_id"))
    period: NonEmptyStr
    item: NonEmptyStr
    prev_value: Decimal | None = None
    curr_value: Decimal | None = None
    tariff: Decimal | None = None
    amount: Decimal | None = None
    meta: Any = None

    @field_validator("apartment_id", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("must be an integer")
        return value


class UpsertResponse(BaseModel):
    updated: int


class LastPeriodResponse(BaseModel):
    period: str | None
