import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from config import Settings, get_settings
from database import Store
from schemas import (
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    CategoryWithStatsOut,
    ExpenseIn,
    ExpenseOut,
    ExpenseUpdate,
    ExpenseWithCategoryOut,
    LoginIn,
    MessageOut,
    RegisterIn,
    StatsOut,
    UserEnvelope,
    UserOut,
)
from security import hash_password, verify_password_hash
from services import (
    CategoryNotFound,
    CategoryService,
    EmailAlreadyRegistered,
    ExpenseFilters,
    ExpenseService,
    StatsService,
    UserService,
    seed_demo_user,
)

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user_id"

router = APIRouter(prefix="/api")


async def get_db(request: Request):
    db = request.app.state.store.session()
    try:
        yield db
    finally:
        db.close()


async def current_user_id(request: Request) -> int:
    user_id = request.session.get(SESSION_USER_KEY)
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return int(user_id)


def _user_envelope(user) -> UserEnvelope:
    return UserEnvelope(user=UserOut.model_validate(user))


def _optional_param(request: Request, name: str) -> Optional[str]:
    value = request.query_params.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def filters_from_request(request: Request) -> ExpenseFilters:
    category_param = _optional_param(request, "categoryId")
    start_param = _optional_param(request, "startDate")
    end_param = _optional_param(request, "endDate")
    try:
        category_id = int(category_param) if category_param else None
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail="categoryId must be an integer"
        ) from exc
    try:
        start_date = date.fromisoformat(start_param) if start_param else None
        end_date = date.fromisoformat(end_param) if end_param else None
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail="Dates must use the YYYY-MM-DD format"
        ) from exc
    return ExpenseFilters(
        category_id=category_id,
        start_date=start_date,
        end_date=end_date,
        search=request.query_params.get("search") or None,
    )


# Auth


@router.post("/auth/register", response_model=UserEnvelope)
async def register(data: RegisterIn, request: Request, db: Session = Depends(get_db)):
    users = UserService(db)
    if users.get_by_email(data.email) is not None:
        raise HTTPException(status_code=400, detail="User already exists")
    password_hash = await run_in_threadpool(hash_password, data.password)
    try:
        user = users.add(data.email, password_hash, data.full_name)
    except EmailAlreadyRegistered as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    request.session[SESSION_USER_KEY] = user.id
    return _user_envelope(user)


@router.post("/auth/login", response_model=UserEnvelope)
async def login(data: LoginIn, request: Request, db: Session = Depends(get_db)):
    user = UserService(db).get_by_email(data.email)
    stored = user.password_hash if user is not None else None
    valid = await run_in_threadpool(verify_password_hash, stored, data.password)
    if not valid:
        logger.info("login_failed")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    request.session[SESSION_USER_KEY] = user.id
    logger.info(f"login: user_id={user.id}")
    return _user_envelope(user)


@router.post("/auth/logout", response_model=MessageOut)
async def logout(request: Request, user_id: int = Depends(current_user_id)):
    request.session.clear()
    logger.info(f"logout: user_id={user_id}")
    return MessageOut(message="Logged out successfully")


@router.get("/auth/me", response_model=UserEnvelope)
async def me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    user = UserService(db).get(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return _user_envelope(user)


# Categories


@router.get("/categories", response_model=list[CategoryWithStatsOut])
async def list_categories(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    categories = CategoryService(db, user_id).list_with_stats()
    return [CategoryWithStatsOut.model_validate(c) for c in categories]


@router.post("/categories", response_model=CategoryOut)
async def create_category(
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user_id).create(data)
    return CategoryOut.model_validate(category)


@router.post("/categories/default", response_model=MessageOut)
async def seed_default_categories(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    if CategoryService(db, user_id).seed_defaults():
        return MessageOut(message="Default categories created")
    return MessageOut(message="Categories already exist")


@router.put("/categories/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: int,
    data: CategoryUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user_id).update(category_id, data)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return CategoryOut.model_validate(category)


@router.delete("/categories/{category_id}", response_model=MessageOut)
async def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    if not CategoryService(db, user_id).delete(category_id):
        raise HTTPException(status_code=404, detail="Category not found")
    return MessageOut(message="Category deleted successfully")


# Expenses


@router.get("/expenses", response_model=list[ExpenseWithCategoryOut])
async def list_expenses(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    expenses = ExpenseService(db, user_id).list(filters)
    return [ExpenseWithCategoryOut.model_validate(e) for e in expenses]


@router.post("/expenses", response_model=ExpenseOut)
async def create_expense(
    data: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).create(data)
    except CategoryNotFound as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseOut.model_validate(expense)


@router.put("/expenses/{expense_id}", response_model=ExpenseOut)
async def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).update(expense_id, data)
    except CategoryNotFound as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if expense is None:
        raise HTTPException(status_code=404, detail="Expense not found")
    return ExpenseOut.model_validate(expense)


@router.delete("/expenses/{expense_id}", response_model=MessageOut)
async def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    if not ExpenseService(db, user_id).delete(expense_id):
        raise HTTPException(status_code=404, detail="Expense not found")
    return MessageOut(message="Expense deleted successfully")


# Stats


@router.get("/stats", response_model=StatsOut)
async def stats(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    result = StatsService(db, user_id).compute()
    return StatsOut.model_validate(result)


def _format_validation_errors(errors) -> str:
    messages = []
    for error in errors:
        loc = [
            str(part)
            for part in error.get("loc", ())
            if part not in ("body", "query", "path")
        ]
        field = ".".join(loc)
        messages.append(f"{field}: {error['msg']}" if field else error["msg"])
    return "; ".join(messages) or "Invalid request"


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400, content={"message": _format_validation_errors(exc.errors())}
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        f"unhandled_error: {request.method} {request.url.path}", exc_info=exc
    )
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


def create_app(
    store: Optional[Store] = None, settings: Optional[Settings] = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
    store = store or Store(settings.database_url)

    app = FastAPI(title="Expense Tracker")
    app.state.store = store
    app.state.settings = settings
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie="expense_tracker_session",
        max_age=settings.session_max_age_secs,
        same_site="lax",
    )
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.include_router(router)

    if settings.seed_demo:
        with store.session_scope() as session:
            seed_demo_user(session)
    database = store.engine.url.render_as_string(hide_password=True)
    logger.info(f"app_ready: database={database}")
    return app


app = create_app()
