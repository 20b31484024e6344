# reptileguard/services/auth.py
from pathlib import Path
from dotenv import load_dotenv

# Load .env that sits at the project root
load_dotenv(Path(__file__).resolve().parents[2] / ".env")

import os
import time
import logging
from typing import Optional

import boto3
from botocore.exceptions import ClientError
from fastapi import Header, HTTPException, status

from reptileguard.db import dynamo
from reptileguard.errors import NotFoundError, ReptileGuardError
from reptileguard.models.user import (
    LoginResult,
    ProfileUpdate,
    UserProfile,
    UserRole,
    UserSignIn,
    UserSignUp,
    UserToken,
    _is_strong_password,
)

log = logging.getLogger(__name__)

AWS_REGION = os.getenv("AWS_REGION", "ap-south-1")
USER_POOL_ID = os.getenv("COGNITO_USER_POOL_ID")  # needed to roll back a half-finished sign-up
CLIENT_ID = os.getenv("COGNITO_APP_CLIENT_ID")    # REQUIRED for sign up / initiate_auth
ALLOW_GUESTS = os.getenv("ALLOW_GUESTS", "true").strip().lower() in {"1", "true", "yes", "on"}

if not CLIENT_ID:
    raise RuntimeError(
        "COGNITO_APP_CLIENT_ID is not set. Create .env and define COGNITO_APP_CLIENT_ID=<your app client id>."
    )

cognito = boto3.client("cognito-idp", region_name=AWS_REGION)


def _error_message(e: ClientError, default: str) -> str:
    return e.response.get("Error", {}).get("Message", default)


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


# ----------------------------
# Registration
# ----------------------------

def sign_up(user: UserSignUp) -> UserProfile:
    """
    Register a user in Cognito using email as the username, then store the
    profile under the Cognito sub.
    """
    email = _normalize_email(user.email)
    password = user.password.strip()

    # Strength check (pydantic already enforces min length; we add stricter rules)
    err = _is_strong_password(password, email)
    if err:
        raise HTTPException(status_code=400, detail=err)

    try:
        resp = cognito.sign_up(
            ClientId=CLIENT_ID,
            Username=email,   # using email as the Cognito username
            Password=password,
            UserAttributes=[
                {"Name": "email", "Value": email},
                {"Name": "name", "Value": user.name.strip()},
            ],
        )
    except ClientError as e:
        if _error_code(e) == "UsernameExistsException":
            raise HTTPException(
                status_code=409,
                detail=f'The email "{email}" is already registered. Please sign in.',
            )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_error_message(e, str(e)))

    profile = UserProfile(
        id=resp.get("UserSub", ""),
        name=user.name.strip(),
        email=email,
        role=user.role,
        isGuest=False,
        mobile=user.mobile.strip(),
        altMobile=(user.altMobile or "").strip() or None,
        designation=user.designation or None,
        state=user.state,
        district=user.district,
        taluk=user.taluk,
        village=user.village,
        landmark=user.landmark,
        pincode=user.pincode,
    )
    try:
        dynamo.put_profile(profile.model_dump(mode="json"))
    except ReptileGuardError:
        # without a profile the login is unusable and the email stays taken
        _discard_cognito_user(email)
        raise
    log.info("Registered %s as %s", profile.id, profile.role.value)
    return profile


def _discard_cognito_user(email: str) -> None:
    if not USER_POOL_ID:
        log.error("Profile write failed for %s and COGNITO_USER_POOL_ID is unset; Cognito user left behind", email)
        return
    try:
        cognito.admin_delete_user(UserPoolId=USER_POOL_ID, Username=email)
        log.warning("Rolled back Cognito user %s after a failed profile write", email)
    except ClientError as e:
        log.error("Could not roll back Cognito user %s: %s", email, _error_message(e, str(e)))


def confirm_sign_up(email: str, code: str) -> None:
    """Confirm a newly registered user with the verification code."""
    try:
        cognito.confirm_sign_up(ClientId=CLIENT_ID, Username=_normalize_email(email), ConfirmationCode=code)
    except ClientError as e:
        raise HTTPException(status_code=400, detail=_error_message(e, str(e)))


def resend_confirmation_code(email: str) -> None:
    try:
        cognito.resend_confirmation_code(ClientId=CLIENT_ID, Username=_normalize_email(email))
    except ClientError as e:
        raise HTTPException(status_code=400, detail=_error_message(e, str(e)))


# ----------------------------
# Sessions
# ----------------------------

def _sub_from_access_token(access_token: str) -> str:
    try:
        resp = cognito.get_user(AccessToken=access_token)
    except ClientError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_error_message(e, "Invalid or expired token"))
    for attr in resp.get("UserAttributes", []):
        if attr.get("Name") == "sub":
            return attr.get("Value", "")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")


def _authenticate(email: str, password: str) -> dict:
    """USER_PASSWORD_AUTH flow (be sure your App Client enables this flow)."""
    resp = cognito.initiate_auth(
        ClientId=CLIENT_ID,
        AuthFlow="USER_PASSWORD_AUTH",
        AuthParameters={
            "USERNAME": email,   # we use email as username
            "PASSWORD": password,
        },
    )
    return resp.get("AuthenticationResult", {})


def sign_in(credentials: UserSignIn) -> LoginResult:
    """
    Authenticate, load the stored profile and, when the caller says which
    role tab they signed in from, check it matches the account.
    """
    email = _normalize_email(credentials.email)
    try:
        tokens = _authenticate(email, credentials.password.strip())
    except ClientError as e:
        if _error_code(e) in {"NotAuthorizedException", "UserNotFoundException"}:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect email or password. If you don't have an account, please register.",
            )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_error_message(e, "Authentication failed"))

    token = UserToken(
        access_token=tokens.get("AccessToken", ""),
        refresh_token=tokens.get("RefreshToken", ""),
        id_token=tokens.get("IdToken", ""),
        expires_in=tokens.get("ExpiresIn", 3600),
    )

    user_id = _sub_from_access_token(token.access_token)
    item = dynamo.get_profile(user_id)
    if item is None:
        sign_out(token.access_token)
        raise HTTPException(status_code=404, detail="User profile not found. Please register again.")
    profile = UserProfile.model_validate(item)

    if credentials.role is not None and profile.role != credentials.role:
        sign_out(token.access_token)
        role_name = "Citizen" if profile.role == UserRole.CITIZEN else "Wildlife Officer"
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"This account is registered as a {role_name}. Please switch to the correct tab.",
        )

    return LoginResult(token=token, user=profile)


def sign_out(access_token: str) -> None:
    try:
        cognito.global_sign_out(AccessToken=access_token)
    except ClientError as e:
        log.warning("global_sign_out failed: %s", _error_message(e, str(e)))


def guest_principal(role: UserRole) -> UserProfile:
    """Ephemeral principal for guest mode. Never written to the Users table."""
    is_officer = role == UserRole.WILDLIFE_OFFICER
    return UserProfile(
        id=f"guest-{role.value}-{int(time.time() * 1000)}",
        name="Guest Officer" if is_officer else "Guest Citizen",
        email="guest-officer@reptileguard.com" if is_officer else "guest@reptileguard.com",
        role=role,
        isGuest=True,
        mobile="0000000000",
        state="Karnataka",
        district="Bengaluru Urban",
        taluk="Aranya Bhavan" if is_officer else "N/A",
        village="Malleshwaram" if is_officer else "N/A",
        landmark="Forest HQ",
        pincode="560001",
        designation="Temporary Guest Officer" if is_officer else None,
    )


def get_current_principal(authorization: Optional[str] = Header(None)) -> UserProfile:
    """
    FastAPI dependency. `Bearer <access token>` resolves to the stored
    profile; `Guest <ROLE>` yields a guest principal when guests are allowed.
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    scheme, _, value = authorization.partition(" ")
    scheme, value = scheme.lower(), value.strip()

    if scheme == "guest":
        if not ALLOW_GUESTS:
            raise HTTPException(status_code=401, detail="Guest mode is disabled")
        try:
            return guest_principal(UserRole(value.upper()))
        except ValueError:
            raise HTTPException(status_code=401, detail="Unknown guest role")

    if scheme != "bearer" or not value:
        raise HTTPException(status_code=401, detail="Invalid auth scheme")

    item = dynamo.get_profile(_sub_from_access_token(value))
    if item is None:
        raise HTTPException(status_code=401, detail="User profile not found. Please register again.")
    return UserProfile.model_validate(item)


# ----------------------------
# Password & account
# ----------------------------

def forgot_password(email: str) -> None:
    email = _normalize_email(email)
    if not email:
        raise HTTPException(status_code=400, detail="Please enter your email address.")
    try:
        cognito.forgot_password(ClientId=CLIENT_ID, Username=email)
    except ClientError as e:
        code = _error_code(e)
        if code == "UserNotFoundException":
            raise HTTPException(status_code=404, detail="No account found with this email address.")
        if code in {"LimitExceededException", "TooManyRequestsException"}:
            raise HTTPException(status_code=429, detail="Too many requests. Please try again later.")
        raise HTTPException(status_code=400, detail="Failed to send reset email. Please try again.")


def confirm_forgot_password(email: str, code: str, new_password: str) -> None:
    err = _is_strong_password(new_password, email)
    if err:
        raise HTTPException(status_code=400, detail=err)
    try:
        cognito.confirm_forgot_password(
            ClientId=CLIENT_ID,
            Username=_normalize_email(email),
            ConfirmationCode=code,
            Password=new_password,
        )
    except ClientError as e:
        raise HTTPException(status_code=400, detail=_error_message(e, str(e)))


def delete_account(access_token: str, password: str) -> None:
    """Re-authenticate, then remove the profile and the Cognito user."""
    try:
        resp = cognito.get_user(AccessToken=access_token)
    except ClientError as e:
        raise HTTPException(status_code=401, detail=_error_message(e, "Invalid or expired token"))
    attrs = {a.get("Name"): a.get("Value") for a in resp.get("UserAttributes", [])}
    email = attrs.get("email") or resp.get("Username", "")
    user_id = attrs.get("sub", "")

    try:
        _authenticate(email, password)
    except ClientError as e:
        if _error_code(e) == "NotAuthorizedException":
            raise HTTPException(status_code=401, detail="Incorrect password.")
        raise HTTPException(status_code=400, detail=_error_message(e, "Failed to delete account. Please try again."))

    # login goes first: a leftover profile is harmless, a leftover login is not
    try:
        cognito.delete_user(AccessToken=access_token)
    except ClientError as e:
        raise HTTPException(status_code=400, detail=_error_message(e, "Failed to delete account. Please try again."))
    dynamo.delete_profile(user_id)
    log.info("Deleted account %s", user_id)


def update_profile(user_id: str, updates: ProfileUpdate) -> UserProfile:
    changes = updates.model_dump(exclude_unset=True, exclude_none=True)
    for key in ("name", "mobile", "altMobile"):
        if key in changes:
            changes[key] = changes[key].strip()
    try:
        item = dynamo.update_profile(user_id, changes)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="User not found.")
    return UserProfile.model_validate(item)
