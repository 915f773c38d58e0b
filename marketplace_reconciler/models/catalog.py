"""Local offer and plan catalog models."""

from pydantic import BaseModel, Field


class OfferRecord(BaseModel):
    """Marketplace offer known locally."""

    offer_guid: str
    offer_id: str
    name: str = ""

    class Config:
        from_attributes = True


class PlanRecord(BaseModel):
    """Plan known locally.

    plan_guid is the stable identity; plan_id is only unique within an offer.
    """

    plan_guid: str
    plan_id: str
    offer_guid: str
    display_name: str = ""
    description: str = ""
    is_metering_supported: bool = False
    is_per_user: bool = Field(default=False, description="Priced per seat")

    class Config:
        from_attributes = True
