"""
Main FastAPI application for the Chat Room Relay.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Type, TypeVar

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ValidationError
import uvicorn
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from chatroom.core.config import AppSettings, ConfigLoader, config_loader, get_settings
from chatroom.core.exceptions import BodyMissing, DecodeError, MethodNotAllowed, RelayError
from chatroom.orchestration import SessionManager, SessionRegistry, WebSocketHandler
from chatroom.schemas import (
    UserLoginRequest,
    UserLoginResponse,
    UserLogoutResponse,
    UserWithTokenRequest,
)

logger = logging.getLogger(__name__)

Body = TypeVar("Body", bound=BaseModel)


def setup_logging(settings: AppSettings):
    """Configure root logging once for the process."""
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


# Configure logging in every process that imports the app
setup_logging(get_settings())


# Dependencies

def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_websocket_handler(websocket: WebSocket) -> WebSocketHandler:
    return websocket.app.state.websocket_handler


async def parse_body(request: Request, model: Type[Body]) -> Body:
    """
    Decode a JSON request body.

    Raises:
        BodyMissing: empty body
        DecodeError: body is not valid JSON for model
    """
    raw = await request.body()
    if not raw:
        raise BodyMissing()

    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise DecodeError(str(e))


router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def homepage():
    return "Welcome to the homepage!"


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    settings = request.app.state.config_loader.settings
    session_manager: SessionManager = request.app.state.session_manager
    websocket_handler: WebSocketHandler = request.app.state.websocket_handler

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "active_sessions": await session_manager.get_active_sessions_count(),
        "connected_sessions": await session_manager.get_connected_sessions_count(),
        "open_streams": len(websocket_handler.active_connections),
    }


@router.post("/login", response_model=UserLoginResponse)
async def login(request: Request, session_manager: SessionManager = Depends(get_session_manager)):
    """Log a user in and return their session token."""
    body = await parse_body(request, UserLoginRequest)
    token = await session_manager.login(body.username)
    return UserLoginResponse(token=token)


@router.post("/logout", response_model=UserLogoutResponse)
async def logout(request: Request, session_manager: SessionManager = Depends(get_session_manager)):
    """Log a user out, closing their stream if one is open."""
    body = await parse_body(request, UserWithTokenRequest)
    message = await session_manager.logout(body.username, body.token)
    return UserLogoutResponse(message=message)


@router.websocket("/stream")
async def stream(websocket: WebSocket, websocket_handler: WebSocketHandler = Depends(get_websocket_handler)):
    """
    Session-gated message stream.

    The first frame must be {"username": ..., "token": ...}.
    """
    await websocket_handler.handle_connection(websocket)


# Error handlers
async def relay_error_handler(request: Request, exc: RelayError):
    """Return relay errors as plain text."""
    logger.info(f"{request.method} {request.url.path} failed: {exc.message}")
    return PlainTextResponse(exc.message, status_code=exc.status_code)


async def method_not_allowed_handler(request: Request, exc):
    """Handle 405 errors."""
    return await relay_error_handler(request, MethodNotAllowed(request.method))


def create_app(loader: Optional[ConfigLoader] = None) -> FastAPI:
    """
    Build the application.

    The session registry is created here, once per application, and shared
    by the HTTP handlers and the stream handler through app.state.
    """
    loader = loader or config_loader
    settings = loader.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle.
        Start the config watcher on startup and stop it on shutdown.
        """
        logger.info(f"Starting {settings.app_name}...")
        if settings.config_watch:
            loader.start_watching()

        logger.info("Application startup complete")

        yield  # Application runs

        logger.info("Shutting down application...")
        loader.stop_watching()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Session-gated real-time messaging relay",
        lifespan=lifespan
    )

    registry = SessionRegistry()
    app.state.config_loader = loader
    app.state.registry = registry
    app.state.session_manager = SessionManager(registry)
    app.state.websocket_handler = WebSocketHandler(registry, loader)

    api_config = loader.get_api_config()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(405, method_not_allowed_handler)
    app.include_router(router)

    return app


app = create_app()


def main():
    """Run the server with uvicorn."""
    settings = get_settings()
    api_config = config_loader.get_api_config()

    uvicorn.run(
        "chatroom.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )


# Main entry point
if __name__ == "__main__":
    main()
