"""
Respuestas JSON estandarizadas a partir de un Result

    Éxito:  {"success": true, "data": {...}}
    Error:  {"success": false, "error": "mensaje", "code": "CODIGO"}
"""

from fastapi import status
from fastapi.responses import JSONResponse

from utils.result import Result

# Categoría de error -> código HTTP
STATUS_BY_CATEGORY = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "state_conflict": status.HTTP_409_CONFLICT,
    "concurrency_conflict": status.HTTP_409_CONFLICT,
    "persistence": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def result_response(result: Result, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    if result.success:
        return JSONResponse(status_code=success_status, content=result.to_dict())
    http_status = STATUS_BY_CATEGORY.get(result.category, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=http_status, content=result.to_dict())
