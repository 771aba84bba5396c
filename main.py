import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from balance import BalanceInterval
from config import get_settings
from database import Base, SessionLocal, engine
from errors import InvalidParameter, NotFound
from models import (
    Account,
    Category,
    CategoryRule,
    PaymentRequest,
    SavingGoal,
    Transaction,
    UserMessage,
)
from schemas import (
    CategoryIn,
    CategoryRuleIn,
    PaymentRequestIn,
    SavingGoalIn,
    TransactionIn,
)
from services import (
    AccountService,
    BalanceService,
    CategoryRuleService,
    CategoryService,
    MessageService,
    PaymentRequestService,
    SavingGoalService,
    TransactionService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")

# Clients of the v1 REST API expect 405 for malformed input.
INVALID_INPUT_STATUS = 405


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    Base.metadata.create_all(engine)
    logger.info("Ledger API started")


def current_account(
    x_session_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Account:
    if not x_session_id or not x_session_id.strip():
        raise HTTPException(status_code=401, detail="Missing or invalid session")
    return AccountService(db).resolve(x_session_id)


async def _json_body(request: Request) -> object:
    try:
        return await request.json()
    except ValueError as exc:
        raise HTTPException(
            status_code=INVALID_INPUT_STATUS, detail="Body is not valid JSON"
        ) from exc


def _iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _epoch(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def _category_out(category: Optional[Category]) -> Optional[dict[str, object]]:
    if category is None:
        return None
    return {"id": category.id, "name": category.name}


def _transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": _iso(txn.occurred_at),
        "amount_cents": txn.amount_cents,
        "external_iban": txn.external_iban,
        "type": txn.type.value,
        "description": txn.description,
        "category": _category_out(txn.category),
        "saving_goal_id": txn.saving_goal_id,
    }


def _rule_out(rule: CategoryRule) -> dict[str, object]:
    return {
        "id": rule.id,
        "description": rule.description,
        "iban": rule.iban,
        "type": rule.type.value if rule.type else "",
        "category": _category_out(rule.category),
        "apply_on_history": rule.apply_on_history,
    }


def _goal_out(goal: SavingGoal) -> dict[str, object]:
    return {
        "id": goal.id,
        "name": goal.name,
        "target_cents": goal.target_cents,
        "save_per_month_cents": goal.save_per_month_cents,
        "min_balance_cents": goal.min_balance_cents,
        "balance_cents": goal.saved_cents,
        "completed": goal.completed,
    }


def _request_out(request: PaymentRequest) -> dict[str, object]:
    return {
        "id": request.id,
        "description": request.description,
        "due_date": _iso(request.due_date),
        "amount_cents": request.amount_cents,
        "number_of_requests": request.number_of_requests,
        "filled": request.filled,
        "transactions": [_transaction_out(txn) for txn in request.transactions],
    }


def _message_out(message: UserMessage) -> dict[str, object]:
    return {
        "id": message.id,
        "type": message.type.value,
        "message": message.content,
        "date": _iso(message.occurred_at),
        "read": message.read,
    }


def _interval_out(interval: BalanceInterval) -> dict[str, object]:
    return {
        "open": interval.open,
        "close": interval.close,
        "high": interval.high,
        "low": interval.low,
        "volume": interval.volume,
        "timestamp": _epoch(interval.timestamp),
    }


@app.get("/api/v1/transactions")
def list_transactions(
    request: Request,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    try:
        offset = int(request.query_params.get("offset", "0"))
        limit = int(request.query_params.get("limit", "20"))
        category = request.query_params.get("category")
        category_id = int(category) if category else None
        items = TransactionService(db, account.id).list(
            category_id=category_id, limit=limit, offset=offset
        )
    except ValueError as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    return [_transaction_out(txn) for txn in items]


@app.post("/api/v1/transactions", status_code=201)
async def create_transaction(
    request: Request,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    try:
        data = TransactionIn.model_validate(payload)
    except ValueError as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    try:
        result = TransactionService(db, account.id).create(data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidParameter as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    body = _transaction_out(result.transaction)
    body["messages"] = [_message_out(message) for message in result.messages]
    return body


@app.get("/api/v1/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, account.id).get(transaction_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _transaction_out(txn)


@app.delete("/api/v1/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, account.id).delete(transaction_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidParameter as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/v1/categories")
def list_categories(
    account: Account = Depends(current_account), db: Session = Depends(get_db)
):
    return [_category_out(c) for c in CategoryService(db, account.id).list_all()]


@app.post("/api/v1/categories", status_code=201)
async def create_category(
    request: Request,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    try:
        data = CategoryIn.model_validate(payload)
        category = CategoryService(db, account.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    return _category_out(category)


@app.get("/api/v1/categoryRules")
def list_category_rules(
    account: Account = Depends(current_account), db: Session = Depends(get_db)
):
    return [_rule_out(rule) for rule in CategoryRuleService(db, account.id).list_all()]


@app.post("/api/v1/categoryRules", status_code=201)
async def create_category_rule(
    request: Request,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    try:
        data = CategoryRuleIn.model_validate(payload)
    except ValueError as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    try:
        rule = CategoryRuleService(db, account.id).create(data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _rule_out(rule)


@app.get("/api/v1/categoryRules/{rule_id}")
def get_category_rule(
    rule_id: int,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    try:
        rule = CategoryRuleService(db, account.id).get(rule_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _rule_out(rule)


@app.put("/api/v1/categoryRules/{rule_id}")
async def update_category_rule(
    rule_id: int,
    request: Request,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    try:
        data = CategoryRuleIn.model_validate(payload)
    except ValueError as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    try:
        rule = CategoryRuleService(db, account.id).update(rule_id, data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _rule_out(rule)


@app.delete("/api/v1/categoryRules/{rule_id}")
def delete_category_rule(
    rule_id: int,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    try:
        CategoryRuleService(db, account.id).delete(rule_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/v1/balance/history")
def balance_history(
    request: Request,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    try:
        intervals = BalanceService(db, account.id).history(
            request.query_params.get("intervals"),
            request.query_params.get("interval"),
        )
    except InvalidParameter as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    return [_interval_out(interval) for interval in intervals]


@app.get("/api/v1/savingGoals")
def list_saving_goals(
    account: Account = Depends(current_account), db: Session = Depends(get_db)
):
    return [_goal_out(goal) for goal in SavingGoalService(db, account.id).list_all()]


@app.post("/api/v1/savingGoals", status_code=201)
async def create_saving_goal(
    request: Request,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    try:
        data = SavingGoalIn.model_validate(payload)
        goal = SavingGoalService(db, account.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    return _goal_out(goal)


@app.delete("/api/v1/savingGoals/{goal_id}")
def delete_saving_goal(
    goal_id: int,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    try:
        SavingGoalService(db, account.id).delete(goal_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/v1/paymentRequests")
def list_payment_requests(
    account: Account = Depends(current_account), db: Session = Depends(get_db)
):
    return [
        _request_out(item)
        for item in PaymentRequestService(db, account.id).list_all()
    ]


@app.post("/api/v1/paymentRequests", status_code=201)
async def create_payment_request(
    request: Request,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    try:
        data = PaymentRequestIn.model_validate(payload)
        item = PaymentRequestService(db, account.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=INVALID_INPUT_STATUS, detail=str(exc)) from exc
    return _request_out(item)


@app.get("/api/v1/messages")
def list_messages(
    account: Account = Depends(current_account), db: Session = Depends(get_db)
):
    return [_message_out(m) for m in MessageService(db, account.id).list_all()]


@app.put("/api/v1/messages/{message_id}")
def mark_message_read(
    message_id: int,
    account: Account = Depends(current_account),
    db: Session = Depends(get_db),
):
    try:
        message = MessageService(db, account.id).mark_read(message_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _message_out(message)
