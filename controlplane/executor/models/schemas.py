"""
Request/response schemas for the executor HTTP API.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TapServiceRequest(BaseModel):
    """One entry of a tapServices batch."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    service_url: str = Field(..., description="Address of the function service that saw traffic")
    fn_executor_type: Optional[str] = None


class ServiceAddressResponse(BaseModel):
    address: str


class DumpResponse(BaseModel):
    path: str
