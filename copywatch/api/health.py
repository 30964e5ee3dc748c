from fastapi import APIRouter, Request
from typing import Dict, Any

router = APIRouter()


@router.get("/healthz")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check reporting chain access and block feed progress"""

    engine = getattr(request.app.state, "engine", None)
    feed = getattr(request.app.state, "block_feed", None)

    if engine is None:
        return {"status": "degraded", "reason": "mirror engine not started"}

    chain_status = await engine.chain.health_check()
    feed_status = feed.get_status() if feed else {"running": False, "mode": None, "cursor": None}

    healthy = chain_status["status"] == "healthy" and feed_status["running"]

    return {
        "status": "healthy" if healthy else "degraded",
        "chain": chain_status,
        "feed": feed_status,
        "engine": engine.get_stats(),
    }
