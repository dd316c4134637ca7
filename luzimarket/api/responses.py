"""Translation of service results into HTTP responses."""

from fastapi.responses import JSONResponse

from luzimarket.schemas.common import ServiceResult


def result_response(result: ServiceResult) -> JSONResponse:
    """Serialize a ServiceResult with the status code its error code maps to."""
    return JSONResponse(
        status_code=result.http_status,
        content=result.model_dump(mode="json", exclude_none=True),
    )
