"""
Cleaner response endpoints.

The links in cleaner request emails and texts point at the GET endpoint and
render a small confirmation page. The POST endpoint takes the same answer as
JSON for programmatic clients.
"""
from html import escape
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse

from ..dependencies import get_logger, get_workflow
from ..models import CallbackData, CallbackRequest, CallbackResponse, ErrorResponse
from ...coordination.workflow import CoordinationWorkflow
from ...utils.errors import InvalidResponseError, UnknownTokenError
from ...utils.models import CallbackOutcome, CallbackResult


router = APIRouter(prefix="/callback", tags=["callback"])

PAGE_TITLES = {
    CallbackOutcome.CONFIRMED: "Cleaning confirmed",
    CallbackOutcome.ADVANCED: "Response recorded",
    CallbackOutcome.EXHAUSTED: "Response recorded",
    CallbackOutcome.ALREADY_HANDLED: "Already handled",
}


def _apply(workflow: CoordinationWorkflow, token: str, response: str) -> CallbackResult:
    logger = get_logger()
    try:
        return workflow.handle_response(token, response)
    except InvalidResponseError as e:
        logger.warning("Rejected callback", reason="invalid_response", response=response)
        raise HTTPException(
            status_code=400,
            detail={"message": str(e), "error_code": "INVALID_RESPONSE"}
        )
    except UnknownTokenError as e:
        logger.warning("Rejected callback", reason="unknown_token")
        raise HTTPException(
            status_code=404,
            detail={"message": str(e), "error_code": "UNKNOWN_TOKEN"}
        )


def _page(title: str, message: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head>"
        f"<body><h1>{escape(title)}</h1><p>{escape(message)}</p></body></html>"
    )


@router.get(
    "",
    response_class=HTMLResponse,
    summary="Answer a cleaning request from a link",
    responses={
        200: {"description": "Answer applied or already handled"},
        400: {"description": "Missing parameters or invalid response", "model": ErrorResponse},
        404: {"description": "Unknown token", "model": ErrorResponse}
    }
)
def answer_from_link(
    token: Optional[str] = Query(None, description="Resumption token"),
    response: Optional[str] = Query(None, description="yes or no"),
    workflow: CoordinationWorkflow = Depends(get_workflow)
):
    """
    Apply the answer carried by a yes/no link and render a page for the cleaner.
    """
    if not token or not response:
        raise HTTPException(
            status_code=400,
            detail={"message": "Both token and response are required", "error_code": "MISSING_PARAMETERS"}
        )
    result = _apply(workflow, token, response)
    return HTMLResponse(_page(PAGE_TITLES[result.outcome], result.message))


@router.post(
    "",
    response_model=CallbackResponse,
    summary="Answer a cleaning request",
    responses={
        200: {"description": "Answer applied or already handled"},
        400: {"description": "Invalid request body", "model": ErrorResponse},
        404: {"description": "Unknown token", "model": ErrorResponse}
    }
)
def answer(
    request: CallbackRequest,
    workflow: CoordinationWorkflow = Depends(get_workflow)
):
    """
    Apply a cleaner's answer.

    Args:
        request: Token and yes/no answer
        workflow: Injected coordination workflow

    Returns:
        The outcome and resulting workflow status
    """
    result = _apply(workflow, request.token, request.response)
    return CallbackResponse(
        success=True,
        message=result.message,
        data=CallbackData(
            outcome=result.outcome.value,
            execution_id=result.execution_id,
            status=result.status.value if result.status else None,
            cleaner_name=result.cleaner_name,
        )
    )
