from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    registry = request.app.state.registry
    return {"status": "ok", "sessions": len(registry)}
