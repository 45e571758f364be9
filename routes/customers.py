from fastapi import APIRouter, Depends

from auth import get_current_user
from dependencies import get_store
from repository import BookingStore
from routes import success
from schemas import User

router = APIRouter(prefix="/api/customers", tags=["Customers"])


@router.get("")
def list_customers(user: User = Depends(get_current_user), store: BookingStore = Depends(get_store)):
    """Customers derived from the parlour's appointments, one per phone number."""
    customers = store.list_customers(user.id)
    return success([c.model_dump(mode="json") for c in customers])


@router.get("/phone/{phone}/history")
def history_by_phone(phone: str, user: User = Depends(get_current_user), store: BookingStore = Depends(get_store)):
    appointments = store.customer_history(user.id, customer_phone=phone)
    return success([a.model_dump(mode="json") for a in appointments])


@router.get("/{customer_id}/history")
def history_by_customer(customer_id: str, user: User = Depends(get_current_user), store: BookingStore = Depends(get_store)):
    appointments = store.customer_history(user.id, customer_id=customer_id)
    return success([a.model_dump(mode="json") for a in appointments])
