from pydantic import BaseModel, field_validator


class KeyCreateRequest(BaseModel):
    name: str
    limit: int | float | None = None

    @field_validator("limit", mode="before")
    @classmethod
    def blank_limit_is_none(cls, value):
        if value == "":
            return None
        return value


class KeyUsageUpdateRequest(BaseModel):
    id: str
    usage: int | float


class KeyObject(BaseModel):
    id: str
    name: str
    key: str
    monthly_limit: int | float | None = None
    usage: int | float = 0
    created_at: str


class KeyDeleteResponse(BaseModel):
    success: bool = True
