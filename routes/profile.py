from fastapi import APIRouter, Depends, Response, status

from auth import get_current_user
from dependencies import get_store
from logger import setup_logger
from repository import BookingStore
from routes import success
from schemas import ProfileIn, ServiceIn, User, WorkingHoursIn

logger = setup_logger(__name__)

router = APIRouter(prefix="/api/profile", tags=["Business profile"])


@router.post("")
def save_profile(
    payload: ProfileIn,
    response: Response,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    profile, created = store.save_profile(user.id, payload)
    if created:
        response.status_code = status.HTTP_201_CREATED
        logger.info(f"Created business profile for {user.id}")
        return success(profile.model_dump(mode="json"), "Business profile created successfully")
    return success(profile.model_dump(mode="json"), "Business profile updated successfully")


@router.get("")
def get_profile(user: User = Depends(get_current_user), store: BookingStore = Depends(get_store)):
    profile = store.require_profile(user.id)
    return success(profile.model_dump(mode="json"))


@router.post("/services", status_code=status.HTTP_201_CREATED)
def add_service(
    payload: ServiceIn,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    service = store.save_service(user.id, payload)
    return success(service.model_dump(mode="json"), "Service added successfully")


@router.put("/services/{service_id}")
def update_service(
    service_id: str,
    payload: ServiceIn,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    service = store.save_service(user.id, payload, service_id=service_id)
    return success(service.model_dump(mode="json"), "Service updated successfully")


@router.delete("/services/{service_id}")
def delete_service(service_id: str, user: User = Depends(get_current_user), store: BookingStore = Depends(get_store)):
    store.delete_service(user.id, service_id)
    return success(message="Service deleted successfully")


@router.put("/working-hours")
def update_working_hours(
    payload: WorkingHoursIn,
    user: User = Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    hours = store.update_working_hours(user.id, payload.working_hours)
    return success(hours, "Working hours updated successfully")
