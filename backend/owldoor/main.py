import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .logging_config import setup_logging, get_logger
from .middleware.logging_middleware import LoggingMiddleware
from .routers import health as health_router
from .routers import webhooks as webhooks_router
from .routers import pipeline as pipeline_router
from .routers import geocode as geocode_router
from .routers import pricing as pricing_router
from .routers import matching as matching_router
from .routers import sms_consent as sms_consent_router

logger = get_logger(__name__)

DEV_ORIGINS = ["http://localhost:5173", "http://localhost:8080", "http://localhost:3000"]


def _is_production() -> bool:
    return os.getenv("NODE_ENV") == "production"


def _load_env() -> None:
    # repo-root .env, then backend/.env; variables already in the environment win
    for env_file in (Path(__file__).resolve().parents[2] / ".env",
                     Path(__file__).resolve().parents[1] / ".env"):
        if env_file.exists():
            load_dotenv(dotenv_path=env_file, override=False)


def _cors_origins() -> list[str]:
    if not _is_production():
        return ["*"]
    return [os.getenv("FRONTEND_URL", "https://app.owldoor.com"), *DEV_ORIGINS]


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"success": False, "detail": errors})


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
        extra={"action": "unhandled_exception"},
    )
    content = {"detail": "Internal server error"}
    if not _is_production():
        content = {"detail": str(exc), "type": type(exc).__name__}
    return JSONResponse(status_code=500, content=content)


def create_app() -> FastAPI:
    _load_env()
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    app = FastAPI(title="OwlDoor Backend", version="1.0.0")
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for router_module in (health_router, webhooks_router, pipeline_router, geocode_router,
                          pricing_router, matching_router, sms_consent_router):
        app.include_router(router_module.router)

    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unhandled_error)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("owldoor.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
