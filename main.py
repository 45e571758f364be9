from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from dependencies import get_store
from errors import BookingError
from logger import setup_logger
from repository import BookingStore
from routes import admin, appointments, auth, customers, profile, webhook

logger = setup_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    for name in settings.validate():
        logger.warning(f"Missing required configuration: {name}")
    try:
        get_store().ensure_indexes()
    except BookingError as e:
        logger.error(f"Could not prepare database indexes: {e.message}")
    yield


app = FastAPI(title="Glowbook Booking API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL] if settings.FRONTEND_URL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (auth, profile, appointments, customers, admin, webhook):
    app.include_router(module.router)


# Errors

def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


@app.exception_handler(BookingError)
async def handle_booking_error(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        problems.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return error_response(400, "; ".join(problems) or "Invalid request")


@app.get("/")
def read_root():
    return {"message": "Glowbook Booking API is running"}


@app.get("/health")
def health(store: BookingStore = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": settings.DATABASE_NAME,
        "config": settings.to_dict(),
        "missing_config": settings.validate(),
    }
    try:
        store.ping()
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# Schemas endpoint for the viewer
@app.get("/schema")
def get_schema():
    from schemas import Appointment, BusinessProfile, DraftBooking, Service, User
    return {
        "business_profile": BusinessProfile.model_json_schema(),
        "service": Service.model_json_schema(),
        "appointment": Appointment.model_json_schema(),
        "user": User.model_json_schema(),
        "draft_booking": DraftBooking.model_json_schema(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
