# signserver/routers/health.py
from fastapi import APIRouter, Request

router = APIRouter()

@router.get("/health")
def health(request: Request):
    state = request.app.state
    # no secrets here; this route is not behind the request key
    return {
        "status": "ok",
        "signer": getattr(state.orchestrator.signer, "name", type(state.orchestrator.signer).__name__),
        "jobs": len(state.registry),
    }
