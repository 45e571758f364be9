from fastapi import APIRouter, Depends, status

from auth import get_current_user, hash_password, role_for_email, token_response, verify_password
from dependencies import get_store
from errors import AuthError, ValidationError
from logger import setup_logger
from phone import normalize_phone
from repository import BookingStore
from routes import success
from schemas import LoginIn, Plan, RegisterIn, User, UserProfileUpdate

logger = setup_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, store: BookingStore = Depends(get_store)):
    user = store.create_user(
        email=payload.email,
        password_hash=hash_password(payload.password),
        full_name=payload.full_name,
        phone_number=payload.phone_number,
        role=role_for_email(payload.email),
        plan=Plan.FREE.value,
    )
    logger.info(f"Registered user {user.id} as {user.role}")
    return success(token_response(user), "User registered successfully")


@router.post("/login")
def login(payload: LoginIn, store: BookingStore = Depends(get_store)):
    user = store.get_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise AuthError("Invalid email or password")
    return success(token_response(user), "Login successful")


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return success(user.model_dump(mode="json"))


@router.patch("/profile")
def update_profile(
    payload: UserProfileUpdate,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")
    if "phone_number" in changes:
        changes["phone_number"] = normalize_phone(changes["phone_number"])
    updated = store.update_user(user.id, changes)
    # The token is reissued so its claims follow the stored record
    return success(token_response(updated), "Profile updated successfully")
