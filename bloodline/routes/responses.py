from typing import Any, Dict, Type

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from bloodline.errors import (
    ConcurrentModification,
    DonorNotEligible,
    DuplicateUnitSerial,
    InsufficientInventory,
    InvalidInput,
    InvalidStateTransition,
    LedgerError,
    NotFound,
    StorageUnavailable,
    Timeout,
)
from bloodline.utils.result import Result

ERROR_STATUS_CODES: Dict[Type[LedgerError], int] = {
    InvalidInput: 422,
    NotFound: status.HTTP_404_NOT_FOUND,
    InsufficientInventory: status.HTTP_409_CONFLICT,
    InvalidStateTransition: status.HTTP_409_CONFLICT,
    DuplicateUnitSerial: status.HTTP_409_CONFLICT,
    DonorNotEligible: status.HTTP_409_CONFLICT,
    ConcurrentModification: status.HTTP_409_CONFLICT,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    Timeout: status.HTTP_504_GATEWAY_TIMEOUT,
}


def error_response(error: LedgerError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(
            type(error), status.HTTP_500_INTERNAL_SERVER_ERROR
        ),
        content={
            "success": False,
            "error": {
                "code": error.code,
                "message": error.message,
                "details": jsonable_encoder(error.details()),
            },
        },
    )


def success_response(data: Any, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": jsonable_encoder(data)},
    )


def result_response(
    result: Result, schema=None, status_code: int = status.HTTP_200_OK
) -> JSONResponse:
    """Render an ``Ok``/``Err`` from the service layer as the API envelope."""
    if not result.ok:
        return error_response(result.error)
    value = result.value
    if schema is not None:
        value = schema.model_validate(value)
    return success_response(value, status_code=status_code)
