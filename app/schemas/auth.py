# app/schemas/auth.py
from pydantic import BaseModel
from typing import Optional

from app.schemas.user import UserOut


class RegisterRequest(BaseModel):
    id_token: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    invite_code: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AccessRequestCreate(BaseModel):
    email: Optional[str] = None
    reason: Optional[str] = None


class AuthResponse(BaseModel):
    token: str
    user: UserOut


class VerifyResponse(BaseModel):
    user: UserOut


class AccessRequestResponse(BaseModel):
    success: bool = True
    message: str = "Application submitted successfully"


class LogoutResponse(BaseModel):
    success: bool = True
    message: str = "Successfully logged out"
