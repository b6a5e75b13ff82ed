"""
Pydantic request/response schemas for the Postcode Hierarchy API

Request bodies are validated here, before anything reaches the mutation
gateway. JSON field names follow the camelCase convention of the read
payloads (countryId, wardId, ...); snake_case names are accepted too.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from database.models import (
    COUNTRY_NAME_MAX,
    COUNTY_NAME_MAX,
    AREA_NAME_MAX,
    ISO_CODE_MAX,
    AREA_CODE_MAX,
    OUTCODE_MAX,
    INCODE_LENGTH,
    slugify,
    normalize_code,
)


def _id_field(camel: str, snake: str, description: str):
    return Field(
        ...,
        ge=1,
        validation_alias=AliasChoices(camel, snake),
        serialization_alias=camel,
        description=description,
    )


def _require_slug(name: str) -> str:
    name = name.strip()
    if not slugify(name):
        raise ValueError("Name must contain at least one letter or digit")
    return name


# ============================================
# REQUEST MODELS
# ============================================

class CountryCreate(BaseModel):
    """Request schema for creating a country."""
    name: str = Field(..., min_length=1, max_length=COUNTRY_NAME_MAX)
    iso: Optional[str] = Field(default=None, max_length=ISO_CODE_MAX)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _require_slug(v)


class CountryUpdate(BaseModel):
    """Request schema for a country merge-patch. Omitted fields are kept."""
    name: Optional[str] = Field(default=None, max_length=COUNTRY_NAME_MAX)
    iso: Optional[str] = Field(default=None, max_length=ISO_CODE_MAX)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        # Empty means "keep the stored name"
        if v is None or not v.strip():
            return None
        return _require_slug(v)


class CountyCreate(BaseModel):
    """Request schema for creating a county."""
    name: str = Field(..., min_length=1, max_length=COUNTY_NAME_MAX)
    code: str = Field(..., min_length=1, max_length=AREA_CODE_MAX)
    country_id: int = _id_field("countryId", "country_id", "Parent country id")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _require_slug(v)


class DistrictCreate(BaseModel):
    """Request schema for creating a district."""
    name: str = Field(..., min_length=1, max_length=AREA_NAME_MAX)
    code: str = Field(..., min_length=1, max_length=AREA_CODE_MAX)
    county_id: int = _id_field("countyId", "county_id", "Parent county id")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _require_slug(v)


class WardCreate(BaseModel):
    """Request schema for creating a ward."""
    name: str = Field(..., min_length=1, max_length=AREA_NAME_MAX)
    code: str = Field(..., min_length=1, max_length=AREA_CODE_MAX)
    district_id: int = _id_field("districtId", "district_id", "Parent district id")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _require_slug(v)


class OutcodeCreate(BaseModel):
    """Request schema for creating an outcode (e.g. "SW1A")."""
    code: str = Field(..., min_length=1, max_length=OUTCODE_MAX)

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: str) -> str:
        normalized = normalize_code(v)
        if not normalized.isalnum() or not normalized.isascii():
            raise ValueError("Outcode must contain only letters and digits")
        return normalized


class IncodeCreate(BaseModel):
    """Request schema for creating an incode (e.g. "1AA")."""
    code: str = Field(..., min_length=1, max_length=INCODE_LENGTH)

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: str) -> str:
        normalized = normalize_code(v)
        if not normalized.isalnum() or not normalized.isascii():
            raise ValueError("Incode must contain only letters and digits")
        return normalized


class PostcodeCreate(BaseModel):
    """Request schema for linking an outcode and incode into a postcode."""
    outcode_id: int = _id_field("outcodeId", "outcode_id", "Outcode id")
    incode_id: int = _id_field("incodeId", "incode_id", "Incode id")
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    ward_id: int = _id_field("wardId", "ward_id", "Ward containing the postcode")


# ============================================
# RESPONSE MODELS
# ============================================

class CountryResponse(BaseModel):
    """A stored country."""
    id: int
    name: str
    slug: str
    iso: Optional[str] = None

    model_config = {"from_attributes": True}


class CountyResponse(BaseModel):
    """A stored county."""
    id: int
    name: str
    slug: str
    code: str
    country_id: int = Field(..., serialization_alias="countryId")

    model_config = {"from_attributes": True}


class DistrictResponse(BaseModel):
    """A stored district."""
    id: int
    name: str
    slug: str
    code: str
    county_id: int = Field(..., serialization_alias="countyId")

    model_config = {"from_attributes": True}


class WardResponse(BaseModel):
    """A stored ward."""
    id: int
    name: str
    slug: str
    code: str
    district_id: int = Field(..., serialization_alias="districtId")

    model_config = {"from_attributes": True}


class CodeResponse(BaseModel):
    """A stored outcode or incode."""
    id: int
    code: str

    model_config = {"from_attributes": True}


class PostcodeResponse(BaseModel):
    """A stored postcode junction row."""
    id: int
    outcode_id: int = Field(..., serialization_alias="outcodeId")
    incode_id: int = Field(..., serialization_alias="incodeId")
    latitude: float
    longitude: float
    ward_id: int = Field(..., serialization_alias="wardId")

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    """Plain confirmation message."""
    message: str


class StatusResponse(BaseModel):
    """Response schema for the root endpoint."""
    status: str = "Working..."


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: str = Field(..., description="Database connectivity: ok or unavailable")
    version: str = Field(..., description="API version")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
