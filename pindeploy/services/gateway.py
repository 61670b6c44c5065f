"""Best-effort gateway verification."""

import httpx

from pindeploy.config import Settings
from pindeploy.utils.logging import get_logger

logger = get_logger(__name__)

GATEWAY_TIMEOUT_S = 10.0


async def verify_gateway(
    settings: Settings,
    content_id: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """HEAD the content on the public gateway. Never raises."""
    url = f"{settings.pinata_gateway_url.rstrip('/')}/ipfs/{content_id}"
    try:
        async with httpx.AsyncClient(
            transport=transport,
            timeout=GATEWAY_TIMEOUT_S,
            follow_redirects=True,
        ) as client:
            response = await client.head(url)
    except httpx.HTTPError as e:
        logger.warning("gateway.unreachable", url=url, error=str(e))
        return False

    if response.is_error:
        logger.warning(
            "gateway.not_yet_available",
            url=url,
            status_code=response.status_code,
            reason="content may take a moment to propagate",
        )
        return False

    logger.info("gateway.verified", url=url)
    return True
