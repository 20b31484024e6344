from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, EmailStr

from reptileguard.models.user import (
    LoginResult,
    ProfileUpdate,
    UserProfile,
    UserRole,
    UserSignIn,
    UserSignUp,
)
from reptileguard.services import auth as auth_service
from reptileguard.services.auth import get_current_principal

router = APIRouter(prefix="/user", tags=["user"])


def _bearer_token(authorization: Optional[str]) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token.strip()


class ConfirmBody(BaseModel):
    email: EmailStr
    code: str

@router.post("/confirm", status_code=204, summary="Confirm a newly registered user")
def confirm_user(body: ConfirmBody):
    auth_service.confirm_sign_up(body.email, body.code)
    return  # 204 No Content

class EmailBody(BaseModel):
    email: EmailStr

@router.post("/resend-code", status_code=204, summary="Resend the confirmation code")
def resend_code(body: EmailBody):
    auth_service.resend_confirmation_code(body.email)
    return


@router.post("/signup", status_code=201, response_model=UserProfile)
def register_user(user: UserSignUp):
    return auth_service.sign_up(user)

@router.post("/login", response_model=LoginResult)
def login(credentials: UserSignIn):
    return auth_service.sign_in(credentials)

class GuestBody(BaseModel):
    role: UserRole = UserRole.CITIZEN

@router.post("/guest", response_model=UserProfile, summary="Start a guest session")
def guest_login(body: GuestBody):
    if not auth_service.ALLOW_GUESTS:
        raise HTTPException(status_code=403, detail="Guest mode is disabled")
    # the client sends `Authorization: Guest <ROLE>` afterwards
    return auth_service.guest_principal(body.role)

@router.post("/logout", status_code=204)
def logout(authorization: Optional[str] = Header(None)):
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        auth_service.sign_out(token.strip())
    return


@router.post("/password-reset", status_code=204, summary="Email a password reset code")
def password_reset(body: EmailBody):
    auth_service.forgot_password(body.email)
    return

class ResetConfirmBody(BaseModel):
    email: EmailStr
    code: str
    new_password: str

@router.post("/password-reset/confirm", status_code=204)
def password_reset_confirm(body: ResetConfirmBody):
    auth_service.confirm_forgot_password(body.email, body.code, body.new_password)
    return


@router.get("/me", response_model=UserProfile)
def me(principal: UserProfile = Depends(get_current_principal)):
    return principal

@router.patch("/me", response_model=UserProfile)
def update_me(updates: ProfileUpdate, principal: UserProfile = Depends(get_current_principal)):
    if principal.isGuest:
        raise HTTPException(status_code=403, detail="Guest profiles cannot be edited")
    return auth_service.update_profile(principal.id, updates)

class DeleteAccountBody(BaseModel):
    password: str

@router.delete("/me", status_code=204)
def delete_me(body: DeleteAccountBody, authorization: Optional[str] = Header(None)):
    auth_service.delete_account(_bearer_token(authorization), body.password)
    return
