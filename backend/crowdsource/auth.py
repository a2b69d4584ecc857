"""
Crowdsource Engine - API Key Authentication

The command webhook and the internal endpoints are called by trusted
services (messaging transport, admin tooling), not by browsers.
"""
import hmac

from fastapi import Header, HTTPException

from .config import AGENT_API_KEY


async def require_api_key(x_api_key: str = Header(...)):
    """Verify the X-API-Key header against AGENT_API_KEY."""
    if not hmac.compare_digest(x_api_key, AGENT_API_KEY):
        raise HTTPException(status_code=403, detail="Invalid API key")
    return True
