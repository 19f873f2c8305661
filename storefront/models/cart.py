"""Cart models"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .common import Money, StorefrontModel, UserError, unwrap_edges


class Attribute(StorefrontModel):
    key: str
    value: Optional[str] = None


class SelectedOption(StorefrontModel):
    name: str
    value: str


class ProductSummary(StorefrontModel):
    id: str
    title: Optional[str] = None
    handle: Optional[str] = None
    vendor: Optional[str] = None


class Image(StorefrontModel):
    url: str
    id: Optional[str] = None
    alt_text: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


class Merchandise(StorefrontModel):
    """Purchasable product variant"""
    id: str
    title: Optional[str] = None
    selected_options: list[SelectedOption] = []
    product: Optional[ProductSummary] = None
    image: Optional[Image] = None
    price: Optional[Money] = None
    compare_at_price: Optional[Money] = None


class LineCost(StorefrontModel):
    total_amount: Optional[Money] = None
    subtotal_amount: Optional[Money] = None
    amount_per_quantity: Optional[Money] = None


class CartLine(StorefrontModel):
    """One merchandise entry in a cart"""
    id: str
    quantity: int = Field(gt=0)
    merchandise: Merchandise
    attributes: list[Attribute] = []
    cost: Optional[LineCost] = None

    @property
    def merchandise_id(self) -> str:
        return self.merchandise.id


class CartCost(StorefrontModel):
    subtotal_amount: Optional[Money] = None
    total_amount: Optional[Money] = None
    total_tax_amount: Optional[Money] = None
    total_duty_amount: Optional[Money] = None


class DiscountCode(StorefrontModel):
    code: str
    applicable: bool = False


class BuyerCustomer(StorefrontModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None


class BuyerIdentity(StorefrontModel):
    country_code: Optional[str] = None
    customer: Optional[BuyerCustomer] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class Cart(StorefrontModel):
    """Server-tracked cart"""
    id: str
    checkout_url: Optional[str] = None
    total_quantity: int = 0
    buyer_identity: Optional[BuyerIdentity] = None
    lines: list[CartLine] = []
    cost: Optional[CartCost] = None
    attributes: list[Attribute] = []
    discount_codes: list[DiscountCode] = []

    @field_validator("lines", mode="before")
    @classmethod
    def _unwrap_lines(cls, value: Any) -> Any:
        return unwrap_edges(value)

    def get_line(self, line_id: str) -> Optional[CartLine]:
        return next((line for line in self.lines if line.id == line_id), None)

    def quantity_of(self, merchandise_id: str) -> int:
        """Total units of one merchandise across all lines"""
        return sum(line.quantity for line in self.lines if line.merchandise_id == merchandise_id)

    def get_discount(self, code: str) -> Optional[DiscountCode]:
        return next((d for d in self.discount_codes if d.code == code), None)

    @property
    def discount_code_values(self) -> list[str]:
        return [d.code for d in self.discount_codes]


class CartLineInput(StorefrontModel):
    """Line to add to a cart"""
    merchandise_id: str
    quantity: int = Field(default=1, gt=0)
    attributes: list[Attribute] = []


class CartLineUpdateInput(StorefrontModel):
    """Change to an existing line; quantity below 1 means removal"""
    id: str
    quantity: int
    merchandise_id: Optional[str] = None
    attributes: Optional[list[Attribute]] = None


class BuyerIdentityInput(StorefrontModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    country_code: Optional[str] = None
    customer_access_token: Optional[str] = None


class CartOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class CartMutationResult(BaseModel):
    """Cart returned by a mutation plus how much of the request it reflects"""
    cart: Optional[Cart] = None
    errors: list[UserError] = []
    outcome: CartOutcome

    @property
    def success(self) -> bool:
        return self.outcome != CartOutcome.FAILURE
