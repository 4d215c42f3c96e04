from pydantic import BaseModel, Field


class AdminVerifyRequest(BaseModel):
    note: str | None = Field(default=None, max_length=500)


class AdminRejectRequest(BaseModel):
    note: str | None = Field(default=None, max_length=500)


class AdminGrantRequest(BaseModel):
    user_id: int
    days: int = Field(ge=1)
    plan: str = "manual"
    note: str | None = Field(default=None, max_length=500)


class ReconcileReport(BaseModel):
    expired: int = 0
    activated: int = 0
    totals_repaired: int = 0
