from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """OpenAPI shape of the envelope built by api_response()."""

    status_code: int = 200
    status: Literal["success", "error"] = "success"
    message: str = Field(..., examples=["Analysis started for 2 URLs"])
    data: T
