from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from marketplace.errors import MarketplaceError, NotFound, InvalidInput, InvalidState, Conflict
from marketplace.core.logging_config import get_logger

logger = get_logger(__name__)

STATUS_CODES = {
    NotFound: 404,
    InvalidInput: 400,
    InvalidState: 409,
    Conflict: 409,
}

def status_code_for(exc: MarketplaceError) -> int:
    for kind, code in STATUS_CODES.items():
        if isinstance(exc, kind):
            return code
    return 400

def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        code = status_code_for(exc)
        logger.info(
            f"Request rejected: {exc.kind}",
            extra={'extra_fields': {'path': request.url.path, 'kind': exc.kind, 'status_code': code}}
        )
        return JSONResponse(status_code=code, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
        message = "Invalid request: " + ", ".join(f for f in fields if f) if fields else "Invalid request"
        return JSONResponse(
            status_code=400,
            content={"error": InvalidInput(message).to_dict()},
        )
