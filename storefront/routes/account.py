"""Customer account API routes"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel

from ..core.context import StorefrontContext
from ..models.common import UserError
from ..models.customer import CustomerCreateInput, Customer, CustomerResult, OrdersPage
from ..state.customer import format_addresses
from .deps import get_storefront_context

router = APIRouter(prefix="/api/account", tags=["Account"])


class LoginRequest(BaseModel):
    """Request to log in with email and password"""
    email: str
    password: str


class AccountResponse(BaseModel):
    """Account API response"""
    success: bool
    logged_in: bool = False
    customer: Optional[Customer] = None
    addresses: list[dict] = []
    errors: list[UserError] = []
    message: Optional[str] = None


def _respond(ctx: StorefrontContext, response: Response, result: Optional[CustomerResult] = None) -> AccountResponse:
    state = ctx.customer_state
    customer = state.customer.get_current()
    notice = state.customer_operation_result.get_current()
    success = result.success if result else customer is not None

    if not success:
        response.status_code = 400

    return AccountResponse(
        success=success,
        logged_in=state.is_logged_in.get_current(),
        customer=customer,
        addresses=format_addresses(customer.addresses, customer.default_address_id) if customer else [],
        errors=result.errors if result else [],
        message=notice.message if notice else None,
    )


@router.get("", response_model=AccountResponse)
async def get_account(
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    """Logged-in customer with addresses"""
    customer = await ctx.customer.get_customer()
    if customer is None:
        # any stale token cookie is deleted on this response
        response.status_code = 401
        return AccountResponse(success=False, message="Not logged in")
    return _respond(ctx, response)


@router.post("/login", response_model=AccountResponse)
async def login(
    request: LoginRequest,
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    """Log in and start a customer session"""
    result = await ctx.customer.login(request.email, request.password)
    return _respond(ctx, response, result)


@router.post("/logout", response_model=AccountResponse)
async def logout(
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    result = await ctx.customer.logout()
    return _respond(ctx, response, result)


@router.post("/register", response_model=AccountResponse)
async def register(
    request: CustomerCreateInput,
    response: Response,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    """Create an account and log into it"""
    result = await ctx.customer.register(request)
    return _respond(ctx, response, result)


@router.get("/orders", response_model=OrdersPage)
async def get_orders(
    first: int = Query(default=10, ge=1, le=100),
    after: Optional[str] = None,
    ctx: StorefrontContext = Depends(get_storefront_context),
):
    """One page of the customer's orders"""
    if not ctx.customer.is_logged_in():
        raise HTTPException(status_code=401, detail="Not logged in")
    return await ctx.customer.get_orders(first=first, after=after)
