import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import Body, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import database
from config import settings
from errors import LibraryError, ValidationError
from library import Library

try:
    import resource
except ImportError:  # not available on Windows
    resource = None

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = database.create_client(settings)
    try:
        db = database.get_database(client, settings)
        database.ensure_indexes(db)
        app.state.library = Library(db, settings=settings)
        logger.info(f"{settings.app_name} started ({settings.environment})")
        yield
    finally:
        database.close_client(client)


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Request logging ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms")
    return response


# --- Errors ---
@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    error = ValidationError(details=details)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


def respond(payload: Any, status_code: int = 200) -> JSONResponse:
    """Serialize store documents (ObjectId, datetime) into a JSON response."""
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload, custom_encoder={ObjectId: str}))


def get_library(request: Request) -> Library:
    return request.app.state.library


def query_params(request: Request) -> Dict[str, str]:
    return dict(request.query_params)


# --- Request models ---
class LoginModel(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class StudentRegistrationModel(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    # bcrypt only hashes the first 72 bytes
    password: str = Field(min_length=1, max_length=72)
    studentId: str = Field(min_length=1)
    department: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class PatronRegistrationModel(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=1, max_length=72)
    phone: Optional[str] = None
    address: Optional[str] = None


class MemberCreateModel(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=1, max_length=72)
    role: Optional[str] = None
    studentId: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    isActive: Optional[bool] = None


class MemberUpdateModel(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = Field(default=None, min_length=1)
    role: Optional[str] = None
    studentId: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    isActive: Optional[bool] = None


class ProfileUpdateModel(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = Field(default=None, min_length=1)
    studentId: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class BookCreateModel(BaseModel):
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    isbn: Optional[str] = None
    available: bool = True
    quantity: int = Field(default=1, ge=0)
    category: Optional[str] = None
    publicationYear: Optional[int] = None


class BookUpdateModel(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    author: Optional[str] = Field(default=None, min_length=1)
    isbn: Optional[str] = None
    available: Optional[bool] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = None
    publicationYear: Optional[int] = None


class LoanCreateModel(BaseModel):
    userId: str
    bookId: str
    dueDate: datetime
    borrowDate: Optional[datetime] = None


class LoanUpdateModel(BaseModel):
    dueDate: Optional[datetime] = None
    returned: Optional[bool] = None
    returnDate: Optional[datetime] = None
    isOverdue: Optional[bool] = None


class LoanReturnModel(BaseModel):
    returnDate: Optional[datetime] = None


# --- Service ---
@app.get("/")
def root():
    return {"status": "ok", "env": settings.environment}


@app.get("/health")
def health(library: Library = Depends(get_library)):
    """Liveness plus a database round-trip."""
    memory = None
    if resource is not None:
        # kilobytes on Linux
        memory = {"maxRss": resource.getrusage(resource.RUSAGE_SELF).ru_maxrss}
    db_ok = library.ping()
    return {
        "status": "ok" if db_ok else "degraded",
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "memory": memory,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
    }


# --- Members ---
@app.post("/members/login")
def login(payload: LoginModel, library: Library = Depends(get_library)):
    if not payload.email or not payload.password:
        return JSONResponse(status_code=400, content={"message": "Email and password are required"})
    user = library.members.authenticate(payload.email, payload.password)
    return respond({"message": "login successful", "user": user})


@app.post("/members/register/student")
def register_student(payload: StudentRegistrationModel, library: Library = Depends(get_library)):
    return respond(library.members.register_student(payload.model_dump()), status_code=201)


@app.post("/members/register/patron")
def register_patron(payload: PatronRegistrationModel, library: Library = Depends(get_library)):
    return respond(library.members.register_patron(payload.model_dump()), status_code=201)


@app.get("/members/stats/overview")
def member_stats(library: Library = Depends(get_library)):
    return respond(library.members.stats_overview())


@app.get("/members")
def list_members(params: Dict[str, str] = Depends(query_params), library: Library = Depends(get_library)):
    return respond(library.members.list(params))


@app.post("/members")
def create_member(payload: MemberCreateModel, library: Library = Depends(get_library)):
    return respond(library.members.create(payload.model_dump(exclude_none=True)), status_code=201)


@app.get("/members/{member_id}")
def get_member(member_id: str, library: Library = Depends(get_library)):
    return respond(library.members.get(member_id))


@app.put("/members/{member_id}")
def update_member(member_id: str, payload: MemberUpdateModel, library: Library = Depends(get_library)):
    return respond(library.members.update(member_id, payload.model_dump(exclude_unset=True)))


@app.put("/members/{member_id}/student")
def update_student(member_id: str, payload: ProfileUpdateModel, library: Library = Depends(get_library)):
    return respond(library.members.update_student_profile(member_id, payload.model_dump(exclude_unset=True)))


@app.put("/members/{member_id}/patron")
def update_patron(member_id: str, payload: ProfileUpdateModel, library: Library = Depends(get_library)):
    return respond(library.members.update_patron_profile(member_id, payload.model_dump(exclude_unset=True)))


@app.delete("/members/{member_id}")
def delete_member(member_id: str, library: Library = Depends(get_library)):
    return respond(library.members.delete(member_id))


# --- Books ---
@app.get("/books/stats/by-category")
def book_stats(library: Library = Depends(get_library)):
    return respond(library.books.stats_by_category())


@app.get("/books")
def list_books(params: Dict[str, str] = Depends(query_params), library: Library = Depends(get_library)):
    return respond(library.books.list(params))


@app.post("/books")
def create_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    return respond(library.books.create(payload.model_dump(exclude_none=True)), status_code=201)


@app.get("/books/{book_id}")
def get_book(book_id: str, library: Library = Depends(get_library)):
    return respond(library.books.get(book_id))


@app.put("/books/{book_id}")
def update_book(book_id: str, payload: BookUpdateModel, library: Library = Depends(get_library)):
    return respond(library.books.update(book_id, payload.model_dump(exclude_unset=True)))


@app.delete("/books/{book_id}")
def delete_book(book_id: str, library: Library = Depends(get_library)):
    return respond(library.books.delete(book_id))


# --- Loans ---
@app.get("/loans/reports/overdue")
def overdue_report(params: Dict[str, str] = Depends(query_params), library: Library = Depends(get_library)):
    return respond(library.loans.overdue_report(params))


@app.get("/loans/stats/summary")
def loan_summary(library: Library = Depends(get_library)):
    return respond(library.loans.summary())


@app.get("/loans/user/{user_id}")
def member_loans(user_id: str, params: Dict[str, str] = Depends(query_params),
                 library: Library = Depends(get_library)):
    return respond(library.loans.list_for_member(user_id, params))


@app.get("/loans")
def list_loans(params: Dict[str, str] = Depends(query_params), library: Library = Depends(get_library)):
    return respond(library.loans.list(params))


@app.post("/loans")
def create_loan(payload: LoanCreateModel, library: Library = Depends(get_library)):
    return respond(library.loans.create(payload.model_dump(exclude_none=True)), status_code=201)


@app.get("/loans/{loan_id}")
def get_loan(loan_id: str, library: Library = Depends(get_library)):
    return respond(library.loans.get(loan_id))


@app.put("/loans/{loan_id}")
def update_loan(loan_id: str, payload: LoanUpdateModel, library: Library = Depends(get_library)):
    return respond(library.loans.update(loan_id, payload.model_dump(exclude_none=True)))


@app.post("/loans/{loan_id}/return")
def return_loan(loan_id: str, payload: Optional[LoanReturnModel] = Body(None),
                library: Library = Depends(get_library)):
    return_date = payload.returnDate if payload else None
    return respond(library.loans.return_loan(loan_id, return_date))


@app.delete("/loans/{loan_id}")
def delete_loan(loan_id: str, library: Library = Depends(get_library)):
    return respond(library.loans.delete(loan_id))


# --- Legacy ---
@app.get("/borrowed")
def borrowed(params: Dict[str, str] = Depends(query_params), library: Library = Depends(get_library)):
    return respond(library.loans.list_borrowed(params))
