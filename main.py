from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr

from auth import SessionUser, authenticate, create_token, optional_session, require_roles, verify_token
from complaints import ComplaintDraft, ComplaintStore, ComplaintWorkflow, StatusUpdate
from config import (APP_NAME, CORS_ORIGINS, DATABASE_NAME, MONGO_URL, SESSION_COOKIE_NAME,
                    SESSION_MAX_AGE_MINUTES)
from database import Database
from errors import CityGuardianError, InvalidPassword, NoSuchUser, NotFound, Unauthorized
from logger import configure_logging, get_logger
from media import CloudinaryUploader, IncomingFile, MediaIntake, check_size, default_uploader
from schemas import Category, MediaHandle, Priority, Status
from users import UserStore, sanitize

configure_logging()
log = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("%s starting up", APP_NAME)
    yield
    app.state.database.close()
    log.info("%s shut down", APP_NAME)


app = FastAPI(title=APP_NAME, lifespan=lifespan)
app.state.database = Database(MONGO_URL, DATABASE_NAME)
app.state.uploader = default_uploader()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Error handlers ----------
@app.exception_handler(CityGuardianError)
def handle_app_error(request: Request, exc: CityGuardianError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = "Invalid request"
    if errors:
        err = errors[0]
        field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = str(err.get("msg", "")).replace("Value error, ", "")
        detail = f"{field}: {msg}" if field else msg
    return JSONResponse(status_code=400, content={"detail": detail})


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------- Dependencies ----------
def get_database(request: Request) -> Database:
    return request.app.state.database


def get_uploader(request: Request) -> CloudinaryUploader:
    return request.app.state.uploader


def get_user_store(database: Database = Depends(get_database)) -> UserStore:
    return UserStore(database)


def get_workflow(database: Database = Depends(get_database),
                 users: UserStore = Depends(get_user_store)) -> ComplaintWorkflow:
    return ComplaintWorkflow(ComplaintStore(database), users)


def get_media_intake(uploader: CloudinaryUploader = Depends(get_uploader)) -> MediaIntake:
    return MediaIntake(uploader)


# ---------- Models for requests ----------
class RegisterRequest(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    role: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Base64UploadRequest(BaseModel):
    images: List[str]


# ---------- Basic routes ----------
@app.get("/")
def root():
    return {"message": f"{APP_NAME} running"}


@app.get("/health")
def health():
    return {"status": "ok", "service": "cityguardian"}


@app.get("/test")
def test_database(database: Database = Depends(get_database)):
    info = {
        "backend": "running",
        "database": "disconnected",
        "collections": [],
    }
    try:
        database.ping()
        info["database"] = "connected"
        info["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        info["database"] = f"error: {str(e)[:80]}"
    return info


# ---------- Auth endpoints ----------
@app.post("/api/auth/register", status_code=201)
def register(req: RegisterRequest, users: UserStore = Depends(get_user_store)):
    user = users.register(req.name, req.email, req.password, req.phone, req.address, req.city, req.role)
    return {"message": "User registered successfully", "user": sanitize(user)}


@app.post("/api/auth/login")
def login(req: LoginRequest, response: Response, users: UserStore = Depends(get_user_store)):
    try:
        user = authenticate(users, req.email, req.password)
    except (NoSuchUser, InvalidPassword) as e:
        log.warning("Login failed for %s: %s", req.email, e.message)
        raise Unauthorized("Invalid credentials")

    token = create_token(user)
    response.set_cookie(
        SESSION_COOKIE_NAME, token,
        max_age=SESSION_MAX_AGE_MINUTES * 60, httponly=True, samesite="lax",
    )
    return {"token": token, "user": sanitize(user)}


@app.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"ok": True}


@app.get("/api/auth/session", response_model=SessionUser)
def session_info(session: SessionUser = Depends(verify_token)):
    return session


@app.get("/api/users/me")
def me(session: SessionUser = Depends(verify_token), users: UserStore = Depends(get_user_store)):
    user = users.find_by_id(session.id)
    if not user:
        raise NotFound("User not found")
    return sanitize(user)


@app.put("/api/users/me/avatar")
def set_avatar(handle: MediaHandle, session: SessionUser = Depends(verify_token),
               users: UserStore = Depends(get_user_store)):
    return sanitize(users.set_avatar(session.id, handle))


# ---------- Upload endpoints ----------
@app.post("/api/upload")
def upload_images(files: Optional[List[UploadFile]] = File(None),
                  session: SessionUser = Depends(verify_token),
                  intake: MediaIntake = Depends(get_media_intake)):
    incoming = []
    for f in files or []:
        if f.size is not None:
            check_size(f.filename or "upload", f.size, intake.max_bytes)
        data = f.file.read()
        incoming.append(IncomingFile(
            data=data,
            content_type=f.content_type or "",
            size=f.size if f.size is not None else len(data),
            filename=f.filename or "upload",
        ))
    log.info("Upload of %d file(s) by %s", len(incoming), session.email)
    handles = intake.upload(incoming)
    return {
        "success": True,
        "images": [h.model_dump() for h in handles],
        "message": f"{len(handles)} image(s) uploaded successfully",
    }


@app.put("/api/upload")
def upload_base64(req: Base64UploadRequest,
                  session: SessionUser = Depends(verify_token),
                  intake: MediaIntake = Depends(get_media_intake)):
    handles = intake.accept_base64(req.images)
    return {
        "success": True,
        "images": [h.model_dump() for h in handles],
        "message": f"{len(handles)} image(s) processed successfully",
    }


# ---------- Complaint endpoints ----------
@app.post("/api/complaints", status_code=201)
def submit_complaint(draft: ComplaintDraft,
                     session: SessionUser = Depends(verify_token),
                     workflow: ComplaintWorkflow = Depends(get_workflow)):
    return workflow.submit(session, draft)


@app.get("/api/complaints")
def list_complaints(status: Optional[Status] = None,
                    category: Optional[Category] = None,
                    priority: Optional[Priority] = None,
                    author_id: Optional[str] = None,
                    mine: bool = False,
                    limit: Optional[int] = Query(None, ge=1),
                    session: Optional[SessionUser] = Depends(optional_session),
                    workflow: ComplaintWorkflow = Depends(get_workflow)):
    if mine:
        if session is None:
            raise Unauthorized()
        author_id = session.id
    return workflow.list(status=status, category=category, priority=priority, author_id=author_id, limit=limit)


@app.get("/api/complaints/{complaint_id}")
def get_complaint(complaint_id: str, workflow: ComplaintWorkflow = Depends(get_workflow)):
    return workflow.get(complaint_id)


@app.patch("/api/complaints/{complaint_id}")
def update_complaint_status(complaint_id: str, body: StatusUpdate,
                            session: SessionUser = Depends(require_roles("employee", "admin")),
                            workflow: ComplaintWorkflow = Depends(get_workflow)):
    return workflow.change_status(session, complaint_id, body.status, body.note)
