from fastapi.responses import JSONResponse


def error_response(status_code: int, error: str, details: str = None) -> JSONResponse:
    """Error body used by the listing and video endpoints: {"error": ..., "details": ...}"""
    content = {"error": error}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)
