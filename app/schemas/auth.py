from pydantic import BaseModel, EmailStr, field_validator


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    full_name: str = ""
    phone: str | None = None

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < 6:
            raise ValueError("Password must be at least 6 characters long.")
        return v

    @field_validator("full_name")
    @classmethod
    def name_length(cls, v: str) -> str:
        v = (v or "").strip()
        if len(v) > 100:
            raise ValueError("Input too long.")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: str
    phone: str | None = None
    role: str = "user"


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
