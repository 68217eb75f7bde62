import logging
from contextlib import asynccontextmanager
from datetime import datetime
from http import HTTPStatus
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPBasic
from pydantic import BaseModel, EmailStr, Field
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from library_app import access_policy
from library_app.config import settings
from library_app.database import initialize_database
from library_app.errors import ForbiddenError, LibraryError, UnauthorizedError
from library_app.models import Role
from library_app.security import Identity
from library_app.services import (
    CatalogService,
    LoanService,
    NotificationService,
    ReportService,
    ReviewService,
    UserService,
)

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

users = UserService()
catalog = CatalogService()
notifications = NotificationService(users)
loans = LoanService(users, notifications)
reviews = ReviewService(users, catalog)
reports = ReportService()


def bootstrap_admin() -> None:
    """Create the configured ADMIN account on first start."""
    email = settings.bootstrap_admin_email
    password = settings.bootstrap_admin_password
    if not email or not password:
        return
    if users.find_user_by_email(email) is None:
        users.create_user("Administrator", email, password, role=Role.ADMIN)
        logger.info("Bootstrap admin %s created", email)


@asynccontextmanager
async def lifespan(app: FastAPI):
    initialize_database()
    bootstrap_admin()
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url=None,
    openapi_url="/openapi/openapi.json",
)


# --- Error bodies ---
def error_body(status: int, message: str, path: str) -> dict:
    status = HTTPStatus(status)
    return {
        "timestamp": datetime.now().isoformat(),
        "status": status.value,
        "error": status.phrase,
        "message": message,
        "path": path,
    }


def error_response(status: int, message: str, path: str) -> JSONResponse:
    headers = {"WWW-Authenticate": "Basic"} if status == HTTPStatus.UNAUTHORIZED else None
    return JSONResponse(status_code=status, content=error_body(status, message, path), headers=headers)


@app.exception_handler(LibraryError)
async def handle_library_error(request: Request, exc: LibraryError):
    return error_response(exc.status_code, exc.message, request.url.path)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        details.append(f"{field} - {err.get('msg')}; ")
    return error_response(HTTPStatus.BAD_REQUEST, "Validation failed: " + "".join(details), request.url.path)


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), request.url.path)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc) or "Unexpected error", request.url.path)


# --- Security ---
basic_auth = HTTPBasic(auto_error=False)


@app.middleware("http")
async def enforce_access_policy(request: Request, call_next):
    """Resolve the caller and apply the access policy before any handler runs."""
    path = request.url.path
    identity = None
    try:
        credentials = await basic_auth(request)
    except HTTPException:
        return error_response(HTTPStatus.UNAUTHORIZED, "Invalid authentication credentials", path)
    if credentials is not None:
        user = await run_in_threadpool(users.authenticate, credentials.username, credentials.password)
        if user is None:
            logger.warning("Rejected credentials for %s", credentials.username)
            return error_response(HTTPStatus.UNAUTHORIZED, "Bad credentials", path)
        identity = Identity.from_user(user)
    request.state.identity = identity

    try:
        access_policy.authorize(request.method, path, identity)
    except LibraryError as e:
        return error_response(e.status_code, e.message, path)
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def current_identity(request: Request) -> Identity:
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise UnauthorizedError("Full authentication is required to access this resource")
    return identity


def no_content() -> Response:
    return Response(status_code=HTTPStatus.NO_CONTENT)


# --- Models ---
class BookPayload(BaseModel):
    title: str = Field(min_length=1, max_length=150)
    author: str = Field(min_length=1, max_length=100)
    isbn: str = Field(min_length=1, max_length=20)
    published_year: int = Field(ge=1500)
    available_copies: int = Field(ge=0)
    category_id: Optional[int] = None


class CategoryPayload(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class RegistrationPayload(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdatePayload(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: Optional[str] = None


class AdminUserUpdatePayload(ProfileUpdatePayload):
    role: Role


class ReviewPayload(BaseModel):
    book_id: int
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class LoanCountModel(BaseModel):
    created: int


class SummaryModel(BaseModel):
    total_books: int
    available_copies: int
    active_loans: int
    overdue_loans: int
    active_users: int


# --- Books ---
@app.get("/books")
def get_books():
    return [b.to_dict() for b in catalog.list_books()]


@app.get("/books/search")
def search_books(keyword: str):
    return [b.to_dict() for b in catalog.search_anywhere(keyword)]


@app.get("/books/search/title")
def search_books_by_title(title: str):
    return [b.to_dict() for b in catalog.search_by_title(title)]


@app.get("/books/search/author")
def search_books_by_author(author: str):
    return [b.to_dict() for b in catalog.search_by_author(author)]


@app.get("/books/search/category")
def search_books_by_category(category: str):
    return [b.to_dict() for b in catalog.search_by_category_name(category)]


@app.get("/books/{book_id}")
def get_book(book_id: int):
    return catalog.get_book(book_id).to_dict()


@app.post("/books", status_code=HTTPStatus.CREATED)
def create_book(payload: BookPayload):
    return catalog.create_book(**payload.model_dump()).to_dict()


@app.put("/books/{book_id}")
def update_book(book_id: int, payload: BookPayload):
    return catalog.update_book(book_id, **payload.model_dump()).to_dict()


@app.delete("/books/{book_id}", status_code=HTTPStatus.NO_CONTENT)
def delete_book(book_id: int):
    catalog.delete_book(book_id)
    return no_content()


# --- Categories ---
@app.get("/categories")
def get_categories():
    return [c.to_dict() for c in catalog.list_categories()]


@app.get("/categories/{category_id}")
def get_category(category_id: int):
    return catalog.get_category(category_id).to_dict()


@app.post("/categories", status_code=HTTPStatus.CREATED)
def create_category(payload: CategoryPayload):
    return catalog.create_category(payload.name, payload.description).to_dict()


@app.put("/categories/{category_id}")
def update_category(category_id: int, payload: CategoryPayload):
    return catalog.update_category(category_id, payload.name, payload.description).to_dict()


@app.delete("/categories/{category_id}", status_code=HTTPStatus.NO_CONTENT)
def delete_category(category_id: int):
    catalog.delete_category(category_id)
    return no_content()


# --- Users ---
@app.post("/users", status_code=HTTPStatus.CREATED)
def register_user(payload: RegistrationPayload):
    return users.register_user(payload.name, payload.email, payload.password).to_dict()


@app.get("/users")
def get_active_users(include_inactive: bool = False):
    found = users.list_users() if include_inactive else users.list_active_users()
    return [u.to_dict() for u in found]


@app.get("/users/me")
def get_current_user(identity: Identity = Depends(current_identity)):
    return users.get_user_by_email(identity.email).to_dict()


@app.put("/users/me")
def update_current_user(payload: ProfileUpdatePayload, identity: Identity = Depends(current_identity)):
    return users.update_current_user(
        identity.email, name=payload.name, email=payload.email, password=payload.password
    ).to_dict()


@app.get("/users/{user_id}")
def get_user(user_id: int):
    return users.get_user(user_id).to_dict()


@app.put("/users/{user_id}")
def update_user(user_id: int, payload: AdminUserUpdatePayload):
    return users.update_user(
        user_id, name=payload.name, email=payload.email, password=payload.password, role=payload.role
    ).to_dict()


@app.put("/users/{user_id}/activate")
def activate_user(user_id: int):
    return users.activate_user(user_id).to_dict()


@app.delete("/users/{user_id}", status_code=HTTPStatus.NO_CONTENT)
def deactivate_user(user_id: int):
    users.deactivate_user(user_id)
    return no_content()


# --- Loans ---
@app.get("/loans")
def get_loans():
    return [loan.to_dict() for loan in loans.get_all_loans()]


@app.get("/loans/overdue")
def get_overdue_loans():
    return [loan.to_dict() for loan in loans.get_overdue_loans()]


@app.get("/loans/allActive")
def get_all_active_loans():
    return [loan.to_dict() for loan in loans.get_all_active_loans()]


@app.get("/loans/me")
def get_my_loans(identity: Identity = Depends(current_identity)):
    return [loan.to_dict() for loan in loans.get_loans_for_email(identity.email)]


@app.get("/loans/me/active")
def get_my_active_loans(identity: Identity = Depends(current_identity)):
    return [loan.to_dict() for loan in loans.get_active_loans_for_email(identity.email)]


@app.get("/loans/user/{user_id}")
def get_loans_for_user(user_id: int):
    return [loan.to_dict() for loan in loans.get_loans_for_user(user_id)]


@app.get("/loans/{loan_id}")
def get_loan(loan_id: int):
    return loans.get_loan(loan_id).to_dict()


@app.post("/loans", status_code=HTTPStatus.CREATED)
def create_loan(
    user_id: int = Query(..., alias="userId"),
    book_id: int = Query(..., alias="bookId"),
    identity: Identity = Depends(current_identity),
):
    # borrowing on someone else's account is a staff action
    if user_id != identity.user_id and not identity.is_staff:
        raise ForbiddenError("You are not allowed to create loans for other users")
    return loans.create_loan(user_id, book_id).to_dict()


@app.post("/loans/borrow/{book_id}", status_code=HTTPStatus.CREATED)
def borrow_book(book_id: int, identity: Identity = Depends(current_identity)):
    return loans.create_loan_for_email(identity.email, book_id).to_dict()


@app.post("/loans/overdue/notify", response_model=LoanCountModel)
def notify_overdue_borrowers():
    return LoanCountModel(created=loans.create_overdue_notifications())


@app.post("/loans/{loan_id}/return")
def return_loan(loan_id: int, identity: Identity = Depends(current_identity)):
    return loans.return_loan(loan_id, identity.email).to_dict()


@app.delete("/loans/{loan_id}", status_code=HTTPStatus.NO_CONTENT)
def delete_loan(loan_id: int):
    loans.delete_loan(loan_id)
    return no_content()


# --- Notifications ---
@app.get("/notifications/me")
def get_my_notifications(identity: Identity = Depends(current_identity)):
    return [n.to_dict() for n in notifications.get_notifications_for_email(identity.email)]


@app.get("/notifications/me/unread")
def get_my_unread_notifications(identity: Identity = Depends(current_identity)):
    return [n.to_dict() for n in notifications.get_unread_notifications_for_email(identity.email)]


@app.post("/notifications/overdue-alert", status_code=HTTPStatus.NO_CONTENT)
def create_overdue_alert_for_librarians():
    notifications.notify_librarians_about_overdue_beyond_one_week()
    return no_content()


@app.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: int, identity: Identity = Depends(current_identity)):
    return notifications.mark_as_read(notification_id, identity.email).to_dict()


@app.delete("/notifications/{notification_id}", status_code=HTTPStatus.NO_CONTENT)
def delete_notification(notification_id: int, identity: Identity = Depends(current_identity)):
    notifications.delete_notification(notification_id, identity.email)
    return no_content()


# --- Reviews ---
@app.post("/reviews", status_code=HTTPStatus.CREATED)
def create_review(payload: ReviewPayload, identity: Identity = Depends(current_identity)):
    return reviews.create_review(identity.email, payload.book_id, payload.rating, payload.comment).to_dict()


@app.get("/reviews")
def get_reviews():
    return [r.to_dict() for r in reviews.get_all_reviews()]


@app.get("/reviews/me")
def get_my_reviews(identity: Identity = Depends(current_identity)):
    return [r.to_dict() for r in reviews.get_reviews_for_email(identity.email)]


@app.get("/reviews/book/{book_id}")
def get_reviews_for_book(book_id: int):
    return [r.to_dict() for r in reviews.get_reviews_for_book(book_id)]


@app.get("/reviews/book/{book_id}/average-rating")
def get_average_rating(book_id: int) -> float:
    return reviews.get_average_rating_for_book(book_id)


@app.delete("/reviews/{review_id}", status_code=HTTPStatus.NO_CONTENT)
def delete_review(review_id: int, identity: Identity = Depends(current_identity)):
    reviews.delete_review(review_id, identity.email)
    return no_content()


# --- Reports ---
@app.get("/reports/summary", response_model=SummaryModel)
def get_summary():
    return SummaryModel(**reports.summary())
