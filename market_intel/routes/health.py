from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health(request: Request):
    s = request.app.state.settings
    return {
        "status": "healthy",
        "service": s.app_name,
        "market_data_mode": "live" if s.market_data_url else "mock",
        "bidder_scoring_mode": "live" if s.bidder_scoring_url else "mock",
    }
