from __future__ import annotations

from gateway.api.handlers.deps import ApiDeps
from gateway.api.schemas import CreateListingRequest, ListingResponse, ListListingsResponse
from gateway.domain.models import ListingSnapshot
from gateway.domain.use_cases.listings import create_listing, list_listings

COMPONENT_ID = "api.listings"


def _listing_response(listing: ListingSnapshot) -> ListingResponse:
    return ListingResponse(
        listing_id=listing.listing_id,
        sender_id=listing.sender_id,
        sender_username=listing.sender_username,
        message_id=listing.message_id,
        active=listing.active,
        created_at=listing.created_at,
        updated_at=listing.updated_at,
    )


async def create_listing_handler(*, request: CreateListingRequest, api_deps: ApiDeps) -> ListingResponse:
    listing = await create_listing(
        repository=api_deps.repository,
        sender_id=request.sender_id,
        sender_username=request.sender_username,
        message_id=request.message_id,
    )
    return _listing_response(listing)


async def list_listings_handler(*, active: bool | None, api_deps: ApiDeps) -> ListListingsResponse:
    items = await list_listings(repository=api_deps.repository, active=active)
    return ListListingsResponse(items=[_listing_response(item) for item in items])
