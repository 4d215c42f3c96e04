from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utcnow


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    full_name: str = ""
    phone: str | None = None
    role: str = "user"  # "user" | "admin"
    # Weekly per-IP registration cap is counted on this column
    registration_ip: str | None = Field(default=None, index=True)
    is_banned: bool = False
    created_at: datetime = Field(default_factory=utcnow, index=True)
