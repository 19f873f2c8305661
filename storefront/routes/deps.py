"""Shared route dependencies"""

from fastapi import Depends, Request, Response

from ..core.config import Settings, get_settings
from ..core.context import StorefrontContext, create_server_context
from ..services.storefront_client import StorefrontClient


def get_storefront_client(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> StorefrontClient:
    """Get or create the application-wide Storefront client"""
    client = getattr(request.app.state, "storefront_client", None)
    if client is None:
        client = StorefrontClient.from_settings(settings)
        request.app.state.storefront_client = client
    return client


def get_storefront_context(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    client: StorefrontClient = Depends(get_storefront_client),
) -> StorefrontContext:
    """Fresh per-request context; nothing is shared between requests"""
    return create_server_context(settings, client, request, response)
