import logging
import traceback
from datetime import date, datetime, timezone
from typing import Literal, Optional

from fastapi import (
    APIRouter,
    Cookie,
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Path,
    Query,
    Request,
    Response,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import TokenError, create_access_token, decode_access_token, token_from_request
from config import get_settings
from database import get_db
from models import User
from periods import now_local
from ratelimit import RateLimiter
from schemas import (
    MAX_ID,
    MAX_PAGE,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    ExpenseIn,
    ExpenseOut,
    ExpenseUpdate,
    LoginIn,
    ProfileUpdate,
    RegisterIn,
    UserOut,
)
from services import (
    AuthenticationError,
    CategoryService,
    ConflictError,
    DevDataService,
    ExpenseQuery,
    ExpenseService,
    InvalidCategoryError,
    NotFoundError,
    ReportService,
    UserService,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("expenses")

general_limiter = RateLimiter(
    "general",
    settings.rate_limit_max,
    settings.rate_limit_window_secs,
    enabled=settings.rate_limit_enabled,
)
auth_limiter = RateLimiter(
    "auth",
    settings.auth_rate_limit_max,
    settings.rate_limit_window_secs,
    enabled=settings.rate_limit_enabled,
    message="Too many authentication attempts, please try again later.",
)

app = FastAPI(title="Expense Tracker API", dependencies=[Depends(general_limiter)])
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _load_app_version() -> str:
    try:
        import tomllib
    except ImportError:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"


APP_VERSION = _load_app_version()

api = APIRouter(prefix="/api")
dev = APIRouter(prefix="/api/test")

SortField = Literal["date", "amount", "title", "paymentMethod", "createdAt", "updatedAt"]

ERROR_STATUS = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidCategoryError, 400),
    (AuthenticationError, 401),
)


def service_error(exc: ValueError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.on_event("startup")
def startup_event():
    logger.info(
        f"api_started: env={settings.environment} version={APP_VERSION} "
        f"rate_limit={settings.rate_limit_enabled}"
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None),
    )


def _error_field(loc) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path")]
    return ".".join(parts) or "body"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": _error_field(err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"unhandled_error: method={request.method} path={request.url.path}",
        exc_info=exc,
    )
    content: dict[str, object] = {"success": False, "message": "Something went wrong!"}
    if not settings.is_production:
        content["error"] = str(exc)
        content["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return JSONResponse(status_code=500, content=content)


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    token: Optional[str] = Cookie(default=None),
    db: Session = Depends(get_db),
) -> User:
    raw = token_from_request(authorization, token)
    if not raw:
        raise HTTPException(status_code=401, detail="Access denied. No token provided.")
    try:
        user_id = decode_access_token(raw)
    except TokenError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user


@app.get("/")
def index():
    return {
        "success": True,
        "message": "Expense Tracker API",
        "version": APP_VERSION,
        "endpoints": {
            "auth": "/api/auth",
            "categories": "/api/categories",
            "expenses": "/api/expenses",
            "reports": "/api/reports",
            "health": "/health",
        },
    }


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {
        "success": True,
        "status": "ok",
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@api.post("/auth/register", status_code=201, dependencies=[Depends(auth_limiter)])
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "success": True,
        "message": "User registered successfully",
        "token": create_access_token(user.id),
        "user": UserOut.model_validate(user).dump(),
    }


@api.post("/auth/login", dependencies=[Depends(auth_limiter)])
def login(payload: LoginIn, response: Response, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(payload.identifier, payload.password)
    except ValueError as exc:
        raise service_error(exc) from exc
    token = create_access_token(user.id)
    response.set_cookie(
        "token",
        token,
        max_age=settings.token_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )
    logger.info(f"user_logged_in: user_id={user.id}")
    return {
        "success": True,
        "message": "Login successful",
        "token": token,
        "user": UserOut.model_validate(user).dump(),
    }


@api.get("/auth/profile")
def get_profile(user: User = Depends(get_current_user)):
    return {"success": True, "user": UserOut.model_validate(user).dump()}


@api.put("/auth/profile")
def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        updated = UserService(db).update_profile(user.id, payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "success": True,
        "message": "Profile updated successfully",
        "user": UserOut.model_validate(updated).dump(),
    }


@api.get("/categories")
def list_categories(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    categories = CategoryService(db, user.id).list_all()
    return {
        "success": True,
        "categories": [CategoryOut.model_validate(c).dump() for c in categories],
    }


@api.post("/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user.id).create(payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "success": True,
        "message": "Category created successfully",
        "category": CategoryOut.model_validate(category).dump(),
    }


@api.put("/categories/{category_id}")
def update_category(
    payload: CategoryUpdate,
    category_id: int = Path(ge=1, le=MAX_ID),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user.id).update(category_id, payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "success": True,
        "message": "Category updated successfully",
        "category": CategoryOut.model_validate(category).dump(),
    }


@api.delete("/categories/{category_id}")
def delete_category(
    category_id: int = Path(ge=1, le=MAX_ID),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        CategoryService(db, user.id).delete(category_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"success": True, "message": "Category deleted successfully"}


@api.get("/expenses")
def list_expenses(
    category: Optional[int] = Query(default=None, ge=1, le=MAX_ID),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    search: Optional[str] = Query(default=None, max_length=100),
    sort_by: SortField = Query(default="date", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    page: int = Query(default=1, ge=1, le=MAX_PAGE),
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = ExpenseQuery(
        category_id=category,
        start=start_date,
        end=end_date,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    try:
        result = ExpenseService(db, user.id).list(query)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "success": True,
        "expenses": [ExpenseOut.model_validate(e).dump() for e in result.items],
        "total": result.total,
        "totalPages": result.total_pages,
        "currentPage": result.page,
        "hasNextPage": result.has_next_page,
        "hasPrevPage": result.has_prev_page,
    }


@api.get("/expenses/{expense_id}")
def get_expense(
    expense_id: int = Path(ge=1, le=MAX_ID),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user.id).get(expense_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"success": True, "expense": ExpenseOut.model_validate(expense).dump()}


@api.post("/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user.id).create(payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "success": True,
        "message": "Expense created successfully",
        "expense": ExpenseOut.model_validate(expense).dump(),
    }


@api.put("/expenses/{expense_id}")
def update_expense(
    payload: ExpenseUpdate,
    expense_id: int = Path(ge=1, le=MAX_ID),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user.id).update(expense_id, payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "success": True,
        "message": "Expense updated successfully",
        "expense": ExpenseOut.model_validate(expense).dump(),
    }


@api.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int = Path(ge=1, le=MAX_ID),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user.id).delete(expense_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"success": True, "message": "Expense deleted successfully"}


@api.get("/reports/dashboard")
def dashboard(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        report = ReportService(db, user.id).dashboard()
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "success": True,
        "data": {
            "monthly": report["monthly"],
            "yearly": report["yearly"],
            "categoryBreakdown": report["category_breakdown"],
            "recentExpenses": [
                ExpenseOut.model_validate(e).dump() for e in report["recent_expenses"]
            ],
            "currency": report["currency"],
        },
    }


@api.get("/reports/monthly-chart")
def monthly_chart(
    year: Optional[int] = Query(default=None, ge=1970, le=9999),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    year = year or now_local().year
    data = ReportService(db, user.id).monthly_chart(year)
    return {"success": True, "year": year, "data": data}


@api.get("/reports/trends")
def trends(
    period: int = Query(default=30, ge=1, le=3650),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        data = ReportService(db, user.id).trends(period)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"success": True, "period": period, "data": data}


@dev.post("/seed-data", status_code=201)
def seed_data(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        count = DevDataService(db, user.id).seed_sample_data()
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "success": True,
        "message": "Sample data created successfully",
        "count": count,
    }


@dev.delete("/clear-data")
def clear_data(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    deleted = DevDataService(db, user.id).clear_data()
    return {
        "success": True,
        "message": "All user data cleared successfully",
        "deleted": deleted,
    }


@dev.get("/stats")
def dev_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    stats = DevDataService(db, user.id).stats()
    return {
        "success": True,
        "stats": {
            "totalUsers": stats["total_users"],
            "userCategories": stats["user_categories"],
            "userExpenses": stats["user_expenses"],
        },
    }


app.include_router(api)
if settings.is_development:
    app.include_router(dev)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, reload=False)


if __name__ == "__main__":
    main()
