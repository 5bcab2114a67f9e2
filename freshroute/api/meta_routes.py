"""FRESHROUTE — Meta API Routes."""

from fastapi import APIRouter, HTTPException, Query, Request

from freshroute.core.errors import UpstreamError
from freshroute.core.logging import get_logger
from freshroute.models.enums import Platform

logger = get_logger("api.meta")

router = APIRouter(prefix="/meta", tags=["Meta"])


@router.get("/validate-token")
async def validate_token(
    request: Request,
    entity_id: str = Query(..., description="Entity whose Meta credential to check"),
):
    """Check if the entity's Meta access token is valid.

    Returns validity status, expiration, and granted scopes.
    """
    provider = request.app.state.providers.get(Platform.META)
    if provider is None:
        raise HTTPException(status_code=503, detail="Meta provider is not configured")

    try:
        result = await provider.describe_credential(entity_id)
    except UpstreamError as e:
        logger.warning(
            f"Token validation failed for {entity_id}: {e}",
            extra={"endpoint": "/meta/validate-token", "entity_id": entity_id},
        )
        status_code = 400 if e.kind == "credential_invalid" else 502
        raise HTTPException(
            status_code=status_code, detail=f"Token validation failed: {str(e)}"
        )

    return {
        "status": "success",
        "entity_id": entity_id,
        "valid": result["valid"],
        "expires_at": result["expires_at"],
        "scopes": result["scopes"],
        "app_id": result["app_id"],
    }
