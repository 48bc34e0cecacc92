import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from auth import SESSION_COOKIE, NotAuthenticated, SessionAuth
from config import get_settings
from csrf import CSRF_HEADER, generate_csrf_token, validate_csrf_token
from database import SessionLocal
from models import Direction, Granularity
from periods import compute_bounds, navigate, resolve_reference
from schemas import (
    BudgetSaveIn,
    CategoryMappingIn,
    IdentityTokenIn,
    ImportBatchIn,
    SavingsGoalIn,
    SavingsGoalProgressIn,
)
from services import (
    AllocationService,
    BalanceService,
    CategoryService,
    DuplicateMapping,
    RecomputeTracker,
    SavingsGoalService,
    StoreQueryFailed,
    TransactionImportService,
    TransactionRepository,
)
from views import (
    category_detail_view,
    goal_view,
    income_breakdown,
    period_view,
    report_view,
    transaction_view,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Tracker")
session_auth = SessionAuth.from_settings()
recompute_tracker = RecomputeTracker()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user(request: Request) -> str:
    try:
        return session_auth.require_user_id(request.cookies.get(SESSION_COOKIE))
    except NotAuthenticated as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def csrf_user(request: Request, user_id: str = Depends(current_user)) -> str:
    if not validate_csrf_token(request.headers.get(CSRF_HEADER, ""), user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return user_id


def granularity_from_request(request: Request) -> Granularity:
    raw = request.query_params.get("granularity") or Granularity.weekly.value
    try:
        return Granularity(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid granularity: {raw}") from exc


def reference_from_request(request: Request):
    try:
        return resolve_reference(request.query_params.get("date"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.exception_handler(StoreQueryFailed)
def store_failure_handler(request: Request, exc: StoreQueryFailed):
    logger.error(f"store_failure: path={request.url.path} error={exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/auth/me")
def auth_me(request: Request):
    user_id = session_auth.current_user_id(request.cookies.get(SESSION_COOKIE))
    return {"authenticated": user_id is not None, "user_id": user_id}


@app.post("/auth/callback")
def auth_callback(payload: IdentityTokenIn):
    try:
        user_id = session_auth.verify_identity(payload.token)
    except NotAuthenticated as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    response = JSONResponse({"user_id": user_id})
    response.set_cookie(
        SESSION_COOKIE,
        session_auth.sign_in(user_id),
        max_age=session_auth.max_age_secs,
        httponly=True,
        samesite="lax",
    )
    return response


@app.post("/auth/sign-out")
def auth_sign_out(request: Request):
    user_id = session_auth.current_user_id(request.cookies.get(SESSION_COOKIE))
    session_auth.sign_out(user_id)
    response = Response(status_code=204)
    response.delete_cookie(SESSION_COOKIE)
    return response


@app.get("/auth/csrf")
def auth_csrf(user_id: str = Depends(current_user)):
    return {"header": CSRF_HEADER, "token": generate_csrf_token(user_id)}


@app.get("/api/periods")
def api_period(request: Request, user_id: str = Depends(current_user)):
    period = compute_bounds(
        reference_from_request(request),
        granularity_from_request(request),
        week_start=settings.week_start_day,
    )
    return period_view(period)


@app.get("/api/periods/navigate")
def api_navigate(request: Request, user_id: str = Depends(current_user)):
    granularity = granularity_from_request(request)
    try:
        direction = Direction(request.query_params.get("direction", ""))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid direction") from exc
    reference = navigate(reference_from_request(request), granularity, direction)
    period = compute_bounds(reference, granularity, week_start=settings.week_start_day)
    return {"date": reference.isoformat(), "period": period_view(period)}


@app.get("/api/balances")
def api_balances(
    request: Request,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    service = BalanceService(db, user_id, tracker=recompute_tracker)
    report = service.report(
        granularity_from_request(request), reference_from_request(request)
    )
    return report_view(report)


@app.get("/api/balances/{category}")
def api_balance_detail(
    category: str,
    request: Request,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    service = BalanceService(db, user_id)
    try:
        detail = service.category_detail(
            category,
            granularity_from_request(request),
            reference_from_request(request),
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return category_detail_view(detail)


@app.get("/api/categories")
def api_categories(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    groups = CategoryService(db, user_id).list_groups()
    return [
        {
            "category": g.name,
            "subcategories": g.subcategories,
            "count": g.count,
            "weekly_allocation_cents": g.weekly_allocation_cents,
        }
        for g in groups
    ]


@app.post("/api/categories", status_code=201)
def api_add_category(
    payload: CategoryMappingIn,
    user_id: str = Depends(csrf_user),
    db: Session = Depends(get_db),
):
    try:
        result = CategoryService(db, user_id).add_mapping(payload)
    except DuplicateMapping as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "category": result.mapping.category,
        "subcategory": result.mapping.subcategory,
        "relabeled": result.relabeled,
        "relabel_error": result.relabel_error,
    }


@app.post("/api/categories/defaults")
def api_seed_categories(user_id: str = Depends(csrf_user), db: Session = Depends(get_db)):
    result = CategoryService(db, user_id).seed_defaults()
    return {
        "added": result.added,
        "already_present": result.already_present,
        "relabeled": result.relabeled,
        "errors": result.errors,
    }


@app.delete("/api/categories/{category}")
def api_remove_category(
    category: str,
    user_id: str = Depends(csrf_user),
    db: Session = Depends(get_db),
):
    try:
        removed = CategoryService(db, user_id).remove_category(category)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"category": category, "removed": removed}


@app.get("/api/allocations")
def api_allocations(
    request: Request,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    granularity = granularity_from_request(request)
    allocations = AllocationService(db, user_id)
    groups = CategoryService(db, user_id).list_groups()
    income, amounts = allocations.display_amounts(
        granularity, [g.name for g in groups]
    )
    breakdown = income_breakdown(allocations.weekly_income(), groups, granularity)
    breakdown["display"] = {"income_cents": income, "allocations": amounts}
    return breakdown


@app.post("/api/allocations")
def api_save_allocations(
    payload: BudgetSaveIn,
    user_id: str = Depends(csrf_user),
    db: Session = Depends(get_db),
):
    result = AllocationService(db, user_id).save_budget(payload)
    return {
        "weekly_income_cents": result.weekly_income_cents,
        "saved": result.saved,
        "deleted": result.deleted,
        "errors": result.errors,
    }


@app.get("/api/transactions")
def api_transactions(
    request: Request,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    category: Optional[str] = request.query_params.get("category") or None
    try:
        limit = int(request.query_params.get("limit", "100"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid limit") from exc
    limit = min(max(limit, 1), 500)
    rows = TransactionRepository(db, user_id).query(category=category, limit=limit)
    return {"items": [transaction_view(txn) for txn in rows]}


@app.post("/api/transactions/import")
def api_import_transactions(
    payload: ImportBatchIn,
    user_id: str = Depends(csrf_user),
    db: Session = Depends(get_db),
):
    result = TransactionImportService(db, user_id).import_batch(payload)
    return {
        "fetched": result.fetched,
        "stored": result.stored,
        "skipped": result.skipped,
    }


@app.get("/api/goals")
def api_goals(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    return [goal_view(goal) for goal in SavingsGoalService(db, user_id).list_all()]


@app.post("/api/goals", status_code=201)
def api_create_goal(
    payload: SavingsGoalIn,
    user_id: str = Depends(csrf_user),
    db: Session = Depends(get_db),
):
    try:
        goal = SavingsGoalService(db, user_id).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return goal_view(goal)


@app.post("/api/goals/{goal_id}/progress")
def api_goal_progress(
    goal_id: int,
    payload: SavingsGoalProgressIn,
    user_id: str = Depends(csrf_user),
    db: Session = Depends(get_db),
):
    try:
        goal = SavingsGoalService(db, user_id).update_progress(goal_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return goal_view(goal)


@app.delete("/api/goals/{goal_id}", status_code=204)
def api_delete_goal(
    goal_id: int,
    user_id: str = Depends(csrf_user),
    db: Session = Depends(get_db),
):
    try:
        SavingsGoalService(db, user_id).delete(goal_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
