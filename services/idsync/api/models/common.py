"""Common Pydantic models used across the API."""

from pydantic import BaseModel, ConfigDict


class IdSyncBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ErrorResponse(IdSyncBaseModel):
    """Body of every domain error response."""

    detail: str
    type: str
