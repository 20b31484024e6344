# reptileguard/models/user.py
from enum import Enum
from typing import Optional
from pydantic import BaseModel, EmailStr, Field


class UserRole(str, Enum):
    CITIZEN = "CITIZEN"
    WILDLIFE_OFFICER = "WILDLIFE_OFFICER"


# ---------- PUBLIC MODELS ----------

class UserProfile(BaseModel):
    # one record per principal in the Users table (guests are never stored)
    id: str
    name: str
    email: str
    role: UserRole
    isGuest: bool = False
    mobile: str
    altMobile: Optional[str] = None
    designation: Optional[str] = None
    state: str
    district: str
    taluk: str = ""
    village: str = ""
    landmark: str = ""
    pincode: str = ""

    @property
    def is_officer(self) -> bool:
        return self.role == UserRole.WILDLIFE_OFFICER


class UserSignUp(BaseModel):
    # what the frontend sends on signup
    email: EmailStr
    password: str = Field(min_length=6, max_length=256)
    name: str = Field(min_length=1)
    role: UserRole = UserRole.CITIZEN
    # Indian mobile numbers: 10 digits, optional +91 prefix
    mobile: str = Field(..., pattern=r"^(\+91)?\d{10}$")
    altMobile: Optional[str] = Field(None, pattern=r"^(\+91)?\d{10}$")
    designation: Optional[str] = None
    state: str = Field(min_length=1)
    district: str = Field(min_length=1)
    taluk: str = ""
    village: str = ""
    landmark: str = ""
    pincode: str = Field("", pattern=r"^(\d{6})?$")


class UserSignIn(BaseModel):
    # what the frontend sends on login
    email: EmailStr
    password: str = Field(min_length=6, max_length=256)
    # the tab the user signed in from; must match the stored role when given
    role: Optional[UserRole] = None


class UserToken(BaseModel):
    # what we return on login
    access_token: str
    refresh_token: Optional[str] = None
    id_token: str
    expires_in: int


class LoginResult(BaseModel):
    token: UserToken
    user: UserProfile


class ProfileUpdate(BaseModel):
    # role, id, email and isGuest are deliberately not updatable
    name: Optional[str] = None
    mobile: Optional[str] = Field(None, pattern=r"^(\+91)?\d{10}$")
    altMobile: Optional[str] = None
    designation: Optional[str] = None
    state: Optional[str] = None
    district: Optional[str] = None
    taluk: Optional[str] = None
    village: Optional[str] = None
    landmark: Optional[str] = None
    pincode: Optional[str] = Field(None, pattern=r"^(\d{6})?$")


# ---------- INTERNAL HELPER ----------

def _is_strong_password(password: str, email: str | None = None) -> Optional[str]:
    """
    Return None if acceptable; otherwise return a short message explaining why.
    Policy: >=8 chars with at least one letter and one digit, and it must not
    contain the email local-part (before '@').
    """
    if len(password) < 8:
        return "Password must be at least 8 characters long."
    has_alpha = any(c.isalpha() for c in password)
    has_digit = any(c.isdigit() for c in password)
    if not (has_alpha and has_digit):
        return "Password must include at least one letter and one number."
    if email:
        local = email.split("@", 1)[0].lower()
        if local and local in password.lower():
            return "Password must not contain your email name."
    return None
