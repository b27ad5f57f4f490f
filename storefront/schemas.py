"""
Request validation structs.

Every inbound payload (JSON body, multipart form or query string) is parsed
into one of these pydantic models before anything touches the database or the
blob store. Empty form values are treated as missing.
"""
from typing import Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    model_validator,
)

from .errors import ValidationFailed

Role = Literal["user", "admin"]


class RequestModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def drop_empty_values(cls, data):
        if isinstance(data, dict):
            return {
                key: value
                for key, value in data.items()
                if not (isinstance(value, str) and not value.strip())
            }
        return data


def parse_request(model, data):
    try:
        return model.model_validate(data or {})
    except ValidationError as exc:
        raise ValidationFailed.from_pydantic(exc) from exc


class RegisterRequest(RequestModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = "user"


class LoginRequest(RequestModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class PageQuery(RequestModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class ListQuery(PageQuery):
    search: Optional[str] = Field(None, max_length=200)


class ProductCreate(RequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    is_popular: Optional[bool] = Field(
        None, validation_alias=AliasChoices("isPopular", "is_popular")
    )


class ProductUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    is_active: Optional[bool] = Field(
        None, validation_alias=AliasChoices("isActive", "is_active")
    )
    is_popular: Optional[bool] = Field(
        None, validation_alias=AliasChoices("isPopular", "is_popular")
    )
    image_mode: Literal["replace", "append"] = Field(
        "replace", validation_alias=AliasChoices("imageMode", "image_mode")
    )


class ReviewCreate(RequestModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)
    name: Optional[str] = Field(None, max_length=100)
