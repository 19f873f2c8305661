"""Cart API routes"""

from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from ..core.context import StorefrontContext
from ..models.cart import Cart
from ..models.common import OperationResult
from ..state.cart import format_cart_line
from .deps import get_storefront_context

router = APIRouter(prefix="/api/cart", tags=["Cart"])


class AddToCartRequest(BaseModel):
    """Request to add a merchandise to the cart"""
    merchandise_id: str
    quantity: int = Field(default=1, gt=0)
    attributes: dict[str, str] = {}


class UpdateLineRequest(BaseModel):
    """Request to change a line quantity; below 1 removes the line"""
    quantity: int


class DiscountRequest(BaseModel):
    code: str = Field(min_length=1)


class CartResponse(BaseModel):
    """Cart API response"""
    success: bool = True
    cart: Optional[Cart] = None
    lines: list[dict] = []
    quantity: int = 0
    message: Optional[str] = None
    severity: Optional[str] = None


def _respond(ctx: StorefrontContext, response: Response, success: bool = True) -> CartResponse:
    state = ctx.cart_state
    result: Optional[OperationResult] = state.cart_operation_result.get_current()

    if not success:
        response.status_code = 400

    return CartResponse(
        success=success,
        cart=state.cart.get_current(),
        lines=[format_cart_line(line) for line in state.cart_lines.get_current()],
        quantity=state.cart_quantity.get_current(),
        message=result.message if result else state.cart_error.get_current(),
        severity=result.severity.value if result else None,
    )


@router.get("", response_model=CartResponse)
async def get_cart(
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    """Current cart for this session; empty when none has been created"""
    await ctx.cart.get()
    return _respond(ctx, response, success=ctx.cart_state.cart_error.get_current() is None)


@router.post("/lines", response_model=CartResponse)
async def add_to_cart(
    request: AddToCartRequest,
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    """Add a line, creating the cart on first use"""
    success = await ctx.cart.add_to_cart(
        request.merchandise_id,
        quantity=request.quantity,
        attributes=request.attributes,
    )
    return _respond(ctx, response, success)


@router.patch("/lines/{line_id:path}", response_model=CartResponse)
async def update_line(
    line_id: str,
    request: UpdateLineRequest,
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    """Update line quantity"""
    success = await ctx.cart.update_line_quantity(line_id, request.quantity)
    return _respond(ctx, response, success)


@router.delete("/lines/{line_id:path}", response_model=CartResponse)
async def remove_line(
    line_id: str,
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    """Remove a line from the cart"""
    success = await ctx.cart.remove_line(line_id)
    return _respond(ctx, response, success)


@router.post("/discounts", response_model=CartResponse)
async def apply_discount(
    request: DiscountRequest,
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    success = await ctx.cart.apply_discount(request.code)
    return _respond(ctx, response, success)


@router.delete("/discounts/{code}", response_model=CartResponse)
async def remove_discount(
    code: str,
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    success = await ctx.cart.remove_discount(code)
    return _respond(ctx, response, success)
