"""
Translation of workflow errors into HTTP responses.

Every ``WorkflowError`` carries a stable ``code``; the response detail is
``{"code": ..., "message": ...}`` so clients can branch on the code.
"""

from __future__ import annotations

from fastapi import HTTPException, status

from queueup.services.workflowErrors import WorkflowError

_STATUS_BY_CODE: dict[str, int] = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "not_owner": status.HTTP_403_FORBIDDEN,
    "wrong_actor": status.HTTP_403_FORBIDDEN,
    "invalid_amount": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "unknown_payment_method": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "payment_failed": status.HTTP_402_PAYMENT_REQUIRED,
    "job_lock_timeout": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: WorkflowError) -> int:
    # Everything else is a conflict with the job's current state
    return _STATUS_BY_CODE.get(exc.code, status.HTTP_409_CONFLICT)


def workflow_http_error(exc: WorkflowError) -> HTTPException:
    return HTTPException(
        status_code=status_for(exc),
        detail={"code": exc.code, "message": exc.message},
    )
