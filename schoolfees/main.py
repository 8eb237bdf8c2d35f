import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from schoolfees.api.v1.fees.router import router as fees_router
from schoolfees.core.config import settings
from schoolfees.core.schemas import ErrorResponse

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _error(status_code: int, message: str, data=None) -> JSONResponse:
    body = ErrorResponse(message=message, data=data).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = _error(exc.status_code, str(exc.detail))
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    # ctx may hold the raw exception object, which is not JSON serializable
    data = [{k: v for k, v in e.items() if k in ("loc", "msg", "type")} for e in errors]
    return _error(status.HTTP_400_BAD_REQUEST, message, data)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Internal server error")


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="School Fees Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(fees_router)

    @app.get("/health")
    async def health() -> dict:
        return {"success": True}

    return app


app = create_app()
