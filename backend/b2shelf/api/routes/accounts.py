"""Account-level routes — configured accounts, bucket usage, remote listing."""

from fastapi import APIRouter, Depends

from b2shelf.api.deps import resolve_account
from b2shelf.config import Account
from b2shelf.schemas.files import RemoteFileView, UsageStats
from b2shelf.schemas.system import AccountInfo
from b2shelf.services import get_listing_cache, get_token_cache
from b2shelf.services.listing_cache import ListingCache
from b2shelf.services.token_cache import TokenCache

router = APIRouter()


@router.get("/accounts", response_model=list[AccountInfo])
async def list_accounts(tokens: TokenCache = Depends(get_token_cache)):
    """Configured account keys, in configuration order."""
    return [
        AccountInfo(key=a.key, bucket_name=a.bucket_name, configured=a.is_configured)
        for a in tokens.accounts.values()
    ]


@router.get("/bucket-info/{account}", response_model=UsageStats)
async def bucket_info(
    account: Account = Depends(resolve_account),
    listing: ListingCache = Depends(get_listing_cache),
):
    """Bucket usage (cached for the listing TTL)."""
    return await listing.get_usage(account.key)


@router.get("/remote-files/{account}", response_model=list[RemoteFileView])
async def remote_files(
    account: Account = Depends(resolve_account),
    listing: ListingCache = Depends(get_listing_cache),
):
    """Objects under files/ in the account's bucket, newest first."""
    return await listing.list_files(account.key)
