"""Main FastAPI application."""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from study_chat import __version__
from study_chat.api.endpoints import router
from study_chat.config import Settings, get_settings
from study_chat.utils.logging import LogConfig, get_logger, setup_logging

logger = get_logger(__name__)


async def handle_unexpected_error(request: Request, exc: Exception) -> PlainTextResponse:
    logger.error(f"Unhandled error for {request.method} {request.url.path}: {exc}", exc_info=exc)
    return PlainTextResponse("Internal Server Error", status_code=500)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application from settings."""
    settings = settings or get_settings()
    setup_logging(LogConfig(level=settings.log_level.upper(), json_logging=settings.log_json))

    app = FastAPI(
        title="Study Chat",
        description=(
            "A conversational study assistant that streams model output and runs tools, "
            "asking the user to confirm the ones that need approval."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        tags_metadata=[
            {
                "name": "Chat",
                "description": "Stream chat turns and manage a session's transcript.",
            },
            {
                "name": "Health",
                "description": "Service health monitoring and status checks.",
            },
        ],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("study_chat.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
