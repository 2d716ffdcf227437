from fastapi import Request

from channel_hub.marketplaces.client import MarketplaceClient


def get_marketplace_client(request: Request) -> MarketplaceClient:
    """The process-wide client created in the app lifespan (shared http pool and limiter)."""
    return request.app.state.marketplace_client
