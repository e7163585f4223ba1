import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.config import settings
from app.db.database import init_db, close_db
from app.middleware.auth import AuthMiddleware
from app.services.errors import TutorAppError

logger = logging.getLogger(__name__)

# Parent dashboard origins
_allowed_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] or [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="Gifted Tutor", lifespan=lifespan)

app.add_middleware(AuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(TutorAppError)
async def handle_app_error(request: Request, exc: TutorAppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


# Import and register routes
from app.routes.auth import router as auth_router
from app.routes.students import router as students_router
from app.routes.curriculum import router as curriculum_router
from app.routes.tutor import router as tutor_router

app.include_router(auth_router)
app.include_router(students_router)
app.include_router(curriculum_router)
app.include_router(tutor_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
