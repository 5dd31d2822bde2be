from fastapi import APIRouter, Request

from ..schemas import StatusResponse


router = APIRouter(tags=["status"])


@router.get("/status", response_model=StatusResponse)
def get_status(request: Request) -> StatusResponse:
    return StatusResponse(pages=len(request.app.state.pages))
