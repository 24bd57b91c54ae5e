import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

IMAGE_URL_MAX_LENGTH = 2048
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".avif")
_DATA_IMAGE_RE = re.compile(r"^data:image/[a-z0-9.+-]+;base64,", re.IGNORECASE)


def check_image_url(value: Optional[str]) -> Optional[str]:
    """Allow only image links with a known extension, or inline ``data:image`` URIs."""
    if value is None:
        return value
    if len(value) > IMAGE_URL_MAX_LENGTH:
        raise ValueError(f"imageUrl must be at most {IMAGE_URL_MAX_LENGTH} characters")
    if _DATA_IMAGE_RE.match(value):
        return value
    path = value.split("#", 1)[0].split("?", 1)[0].lower()
    if not path.endswith(IMAGE_EXTENSIONS):
        raise ValueError("imageUrl must point to a " + ", ".join(IMAGE_EXTENSIONS) + " image")
    return value


class CamelModel(BaseModel):
    # Wire format is camelCase (imageUrl, createdAt, updatedAt)
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# Collection: product. Validates client input; stored records stay plain dicts.
class ProductCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    price: float = Field(..., ge=0)
    description: str = Field(..., min_length=1, max_length=5000)
    features: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, value):
        return check_image_url(value)


class ProductUpdate(CamelModel):
    """Partial update. Only fields the client actually sent are merged."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    features: Optional[List[str]] = None
    image_url: Optional[str] = None

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, value):
        return check_image_url(value)


class DeleteResponse(BaseModel):
    success: bool
    message: str