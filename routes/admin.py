from fastapi import APIRouter, Depends, status

from auth import hash_password, require_superadmin
from dependencies import get_store
from errors import ValidationError
from logger import setup_logger
from phone import normalize_phone
from repository import BookingStore
from routes import success
from schemas import AdminUserIn, AdminUserUpdate, User

logger = setup_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_superadmin)])


@router.get("/users")
def list_users(store: BookingStore = Depends(get_store)):
    return success([u.model_dump(mode="json") for u in store.list_users()])


@router.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(payload: AdminUserIn, store: BookingStore = Depends(get_store)):
    user = store.create_user(
        email=payload.email,
        password_hash=hash_password(payload.password),
        full_name=payload.full_name,
        phone_number=payload.phone_number,
        role=payload.role.value,
        plan=payload.plan.value,
    )
    logger.info(f"Admin created user {user.id} ({user.role}, {user.plan})")
    return success(user.model_dump(mode="json"), "User created successfully")


@router.patch("/users/{user_id}")
def update_user(user_id: str, payload: AdminUserUpdate, store: BookingStore = Depends(get_store)):
    changes = payload.model_dump(mode="json", exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")
    if "password" in changes:
        changes["password_hash"] = hash_password(changes.pop("password"))
    if "phone_number" in changes:
        changes["phone_number"] = normalize_phone(changes["phone_number"])
    user = store.update_user(user_id, changes)
    return success(user.model_dump(mode="json"), "User updated successfully")


@router.delete("/users/{user_id}")
def delete_user(user_id: str, admin: User = Depends(require_superadmin), store: BookingStore = Depends(get_store)):
    if user_id == admin.id:
        raise ValidationError("You cannot delete your own account")
    deleted = store.delete_account(user_id)
    return success(deleted, "User and associated data deleted successfully")


@router.get("/analytics")
def analytics(store: BookingStore = Depends(get_store)):
    return success(store.analytics())
