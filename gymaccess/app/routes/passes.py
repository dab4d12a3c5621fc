"""API routes for issuing and viewing gym passes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..billing import SubscriberIdentity
from ..passes import IssuanceError
from ..schemas.passes import PassIssueRequest, PassIssueResponse, PassListResponse, PassResponse
from ..services.passes import get_pass_service
from .dependencies import get_current_subscriber

router = APIRouter(prefix="/api/passes", tags=["passes"])


@router.post("", response_model=PassIssueResponse, status_code=status.HTTP_201_CREATED)
def issue_pass(
    payload: PassIssueRequest,
    *,
    subscriber: SubscriberIdentity = Depends(get_current_subscriber),
) -> PassIssueResponse:
    service = get_pass_service()
    try:
        result = service.issue(subscriber.subscriber_id, payload.gym_id)
    except IssuanceError as exc:
        raise exc.to_http_exception() from exc
    return PassIssueResponse.from_result(result)


@router.get("", response_model=PassListResponse)
def list_passes(
    include_inactive: bool = Query(False, alias="includeInactive"),
    *,
    subscriber: SubscriberIdentity = Depends(get_current_subscriber),
) -> PassListResponse:
    passes = get_pass_service().list_passes(subscriber.subscriber_id, include_inactive=include_inactive)
    return PassListResponse(passes=[PassResponse.from_pass(item) for item in passes])


@router.get("/{pass_code}", response_model=PassResponse)
def get_pass(
    pass_code: str,
    *,
    subscriber: SubscriberIdentity = Depends(get_current_subscriber),
) -> PassResponse:
    access_pass = get_pass_service().get_pass(subscriber.subscriber_id, pass_code)
    if access_pass is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pass not found")
    return PassResponse.from_pass(access_pass)
