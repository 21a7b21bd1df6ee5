"""
This module contains the base contracts for the application.
"""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict


class BaseContract(BaseModel):
    """
    A base contract for all contracts.
    """
    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseContract):
    """
    Body of every domain error response.
    """
    success: bool = False
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


ERROR_RESPONSES: Dict[Union[int, str], Dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in (400, 403, 404, 409, 429, 502)
}
