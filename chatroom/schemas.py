"""Request and response bodies for the HTTP and stream endpoints."""

from pydantic import BaseModel, Field


class UserLoginRequest(BaseModel):
    username: str = Field(min_length=1)


class UserWithTokenRequest(BaseModel):
    """Body of /logout and the stream handshake frame."""
    username: str = Field(min_length=1)
    token: str


class UserLoginResponse(BaseModel):
    token: str


class UserLogoutResponse(BaseModel):
    message: str


class WebsocketWelcomeResponse(BaseModel):
    welcome: str
