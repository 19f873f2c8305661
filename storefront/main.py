"""
Storefront Application

Server side of the storefront: cart and customer account endpoints backed by
the Shopify Storefront API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from .routes import cart_router, account_router
from .core.config import settings
from .services.storefront_client import StorefrontClient, StorefrontAPIError

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Storefront starting up...")
    logger.info(f"Store domain: {settings.store_domain or 'not configured'}")
    logger.info(f"Storefront API version: {settings.api_version}")

    app.state.storefront_client = StorefrontClient.from_settings(settings)

    yield

    logger.info("Storefront shutting down...")
    client = getattr(app.state, "storefront_client", None)
    if client:
        await client.close()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Cart and customer account state for a Shopify storefront",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(cart_router)
app.include_router(account_router)


@app.exception_handler(StorefrontAPIError)
async def storefront_error_handler(request: Request, exc: StorefrontAPIError):
    """Upstream failures that escaped the services"""
    logger.error(f"Storefront API error on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "storefront",
        "store_configured": bool(settings.store_domain),
        "api_version": settings.api_version,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
