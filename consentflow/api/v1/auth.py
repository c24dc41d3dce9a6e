#consentflow/api/v1/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from consentflow.core.auth_deps import get_current_principal
from consentflow.core.security import create_access_token
from consentflow.db.session import get_db
from consentflow.policies.rbac import Principal
from consentflow.schemas.auth import LoginRequest, RegisterRequest, TokenResponse, UserResponse
from consentflow.services.auth_service import authenticate, register

router = APIRouter(prefix="/auth")


def _principal_resp(principal: Principal) -> dict:
    return {
        "userId": str(principal.user_id),
        "username": principal.username,
        "email": principal.email,
        "displayName": principal.display_name,
    }


@router.post("/register", response_model=UserResponse, status_code=201)
def register_user(req: RegisterRequest, db: Session = Depends(get_db)):
    user = register(
        db,
        username=req.username,
        email=req.email,
        password=req.password,
        display_name=req.display_name,
    )
    return {
        "userId": str(user.id),
        "username": user.username,
        "email": user.email,
        "displayName": user.display_name,
    }


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    principal = authenticate(db, req.login, req.password)
    if not principal:
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    token = create_access_token(
        subject=str(principal.user_id),
        claims={
            "username": principal.username,
            "display_name": principal.display_name,
        },
    )
    return TokenResponse(access_token=token)


@router.get("/me", response_model=UserResponse)
def get_me(principal: Principal = Depends(get_current_principal)):
    return _principal_resp(principal)
