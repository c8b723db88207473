import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import FRONTEND_URL, LOG_LEVEL
from .db import create_db_and_tables
from .dependencies import users_router_permission
from .exceptions import ExamError
from .routers import admin_routers, auth, exam_routers, question_bank
from .schemas.user_schema import UserCreate, UserRead, UserUpdate
from .security import app_users, auth_backend

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # create tables once at startup; migrations are out of scope
    await create_db_and_tables()
    logger.info("Proctored exam engine ready")
    yield


app = FastAPI(title="Proctored Exam Engine", lifespan=lifespan)


@app.exception_handler(ExamError)
async def exam_error_handler(request: Request, exc: ExamError):
    # routers translate the errors they expect; this catches the rest (e.g. retry exhaustion)
    logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# exact origins of the candidate page and the proctor console (no trailing slash)
origins = [
    FRONTEND_URL,
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# staff accounts: /users and /users/me, writes limited to admins
app.include_router(
    app_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"],
    dependencies=[Depends(users_router_permission)],
)

app.include_router(exam_routers.router, prefix="/api")
app.include_router(admin_routers.router, prefix="/api")
app.include_router(question_bank.router, prefix="/api")

app.include_router(app_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])
app.include_router(app_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
app.include_router(auth.router)
