"""Shared Storefront API models"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


def unwrap_edges(value: Any) -> Any:
    """Flatten a GraphQL connection ({edges: [{node}]}) into a list of nodes"""
    if isinstance(value, dict) and "edges" in value:
        return [edge["node"] for edge in value.get("edges") or []]
    return value


class StorefrontModel(BaseModel):
    """Base model speaking the API's camelCase field names"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_variables(self) -> dict[str, Any]:
        """Serialize as GraphQL input variables"""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Money(StorefrontModel):
    """Amount with ISO currency code"""
    amount: Decimal
    currency_code: str = "USD"


class UserError(StorefrontModel):
    """User-facing validation error returned by a mutation"""
    message: str
    field: Optional[list[str]] = None
    code: Optional[str] = None

    @field_validator("field", mode="before")
    @classmethod
    def _field_as_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


class PageInfo(StorefrontModel):
    has_next_page: bool = False
    end_cursor: Optional[str] = None


class Severity(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class OperationResult(BaseModel):
    """Transient outcome notification for the last state-changing action"""
    success: bool
    message: str
    severity: Severity

    @classmethod
    def ok(cls, message: str) -> "OperationResult":
        return cls(success=True, message=message, severity=Severity.SUCCESS)

    @classmethod
    def warning(cls, message: str) -> "OperationResult":
        return cls(success=True, message=message, severity=Severity.WARNING)

    @classmethod
    def info(cls, message: str) -> "OperationResult":
        return cls(success=True, message=message, severity=Severity.INFO)

    @classmethod
    def error(cls, message: str) -> "OperationResult":
        return cls(success=False, message=message, severity=Severity.ERROR)
