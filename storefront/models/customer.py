"""Customer account models"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from .common import Money, PageInfo, StorefrontModel, UserError, unwrap_edges
from .cart import Image


class Address(StorefrontModel):
    """Mailing address; whether it is the default is derived from the customer"""
    id: Optional[str] = None
    formatted: list[str] = []
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    zip: Optional[str] = None
    phone: Optional[str] = None


class AddressInput(StorefrontModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    zip: Optional[str] = None
    phone: Optional[str] = None


class Customer(StorefrontModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    default_address: Optional[Address] = None
    addresses: list[Address] = []

    @field_validator("addresses", mode="before")
    @classmethod
    def _unwrap_addresses(cls, value: Any) -> Any:
        return unwrap_edges(value)

    @property
    def default_address_id(self) -> Optional[str]:
        return self.default_address.id if self.default_address else None


class CustomerCreateInput(StorefrontModel):
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    accepts_marketing: Optional[bool] = None


class CustomerUpdateInput(StorefrontModel):
    email: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    accepts_marketing: Optional[bool] = None


class OrderVariant(StorefrontModel):
    image: Optional[Image] = None


class OrderLineItem(StorefrontModel):
    title: str
    variant: Optional[OrderVariant] = None


class Order(StorefrontModel):
    id: str
    order_number: int
    processed_at: Optional[datetime] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    current_total_price: Optional[Money] = None
    line_items: list[OrderLineItem] = []

    @field_validator("line_items", mode="before")
    @classmethod
    def _unwrap_line_items(cls, value: Any) -> Any:
        return unwrap_edges(value)


class OrdersPage(BaseModel):
    orders: list[Order] = []
    page_info: PageInfo = PageInfo()


class CustomerResult(BaseModel):
    """Outcome of a customer account operation"""
    success: bool
    errors: list[UserError] = []
    address_id: Optional[str] = None

    @classmethod
    def failed(cls, message: str) -> "CustomerResult":
        return cls(success=False, errors=[UserError(message=message)])


class Metafield(StorefrontModel):
    namespace: str
    key: str
    id: Optional[str] = None
    value: Optional[str] = None
    type: Optional[str] = None


class MetafieldResult(BaseModel):
    success: bool
    errors: list[UserError] = []
    metafield: Optional[Metafield] = None
    deleted_id: Optional[str] = None

    @classmethod
    def failed(cls, message: str) -> "MetafieldResult":
        return cls(success=False, errors=[UserError(message=message)])
