import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import analytics
import config
from auth import create_access_token, get_current_user, hash_password, verify_password
from db import engine, get_db
from errors import ServiceError
from models import Base, Holding, User
from orders import OrderExecutor, UserLocks
from quotes import QuoteService

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables (simple demo approach)
    Base.metadata.create_all(bind=engine)
    log.info("quote provider at startup: %s", quote_service.select_provider().name)
    yield


logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Portfolio Microservice", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One quote service per process: it owns the TTL cache and the daily call budget.
quote_service = QuoteService.from_env()
user_locks = UserLocks()


def get_quote_service() -> QuoteService:
    return quote_service


def get_order_executor(quotes: QuoteService = Depends(get_quote_service)) -> OrderExecutor:
    return OrderExecutor(quotes, user_locks)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


class SignupIn(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)


class LoginIn(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class OrderIn(BaseModel):
    symbol: str = Field(min_length=1, max_length=10)
    qty: int = Field(gt=0)
    mode: str = Field(pattern="^(buy|sell)$")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/signup", status_code=201)
def signup(body: SignupIn, db: Session = Depends(get_db)):
    existing = db.execute(
        select(User).where(or_(User.email == body.email, User.username == body.username))
    ).scalars().first()
    if existing is not None:
        raise HTTPException(status_code=400, detail="User already exists")

    user = User(
        username=body.username,
        name=body.name,
        email=body.email,
        password_hash=hash_password(body.password),
        balance=config.STARTING_BALANCE,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="User already exists")
    db.refresh(user)
    log.info("created user %s", user.id)
    return {"token": create_access_token(user.id), "message": "User created successfully"}


@app.post("/api/login")
def login(body: LoginIn, db: Session = Depends(get_db)):
    user = db.execute(select(User).where(User.email == body.email)).scalar_one_or_none()
    if user is None or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    return {"token": create_access_token(user.id)}


def _user_holdings(db: Session, user: User):
    return db.execute(select(Holding).where(Holding.user_id == user.id)).scalars().all()


@app.get("/api/holdings")
def get_holdings(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [
        {"symbol": h.symbol, "quantity": h.quantity, "average_price": float(h.average_price)}
        for h in _user_holdings(db, user)
    ]


@app.get("/api/positions")
def get_positions(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    quotes: QuoteService = Depends(get_quote_service),
):
    return analytics.positions(quotes, _user_holdings(db, user))


@app.post("/api/newOrder")
def new_order(
    body: OrderIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    executor: OrderExecutor = Depends(get_order_executor),
):
    result = executor.execute(db, user.id, body.symbol, body.qty, body.mode)
    return {
        "message": "Order processed successfully",
        "order_id": result.order.id,
        "current_price": result.price,
        "balance": round(result.balance, 2),
    }


@app.get("/api/stock-trends")
def get_stock_trends(quotes: QuoteService = Depends(get_quote_service)):
    return analytics.stock_trends(quotes)


@app.get("/api/trading-summary")
def get_trading_summary(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return analytics.trading_summary(db, user.id)


@app.get("/api/all-stocks")
def get_all_stocks(quotes: QuoteService = Depends(get_quote_service)):
    return analytics.all_stocks(quotes)


@app.get("/api/team-performance")
def get_team_performance(quotes: QuoteService = Depends(get_quote_service)):
    return analytics.team_performance(quotes)


@app.get("/api/option-chain/{symbol}")
def get_option_chain(symbol: str, quotes: QuoteService = Depends(get_quote_service)):
    return analytics.option_chain(quotes, symbol)


@app.get("/api/portfolio-risk")
def get_portfolio_risk(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    quotes: QuoteService = Depends(get_quote_service),
):
    return analytics.portfolio_risk(quotes, _user_holdings(db, user))


@app.get("/api/tf-holdings-predictions")
def get_holdings_predictions(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    quotes: QuoteService = Depends(get_quote_service),
):
    return analytics.holdings_predictions(quotes, _user_holdings(db, user))


@app.get("/api/status")
def get_status(quotes: QuoteService = Depends(get_quote_service)):
    return {
        "status": "operational",
        "api_info": quotes.status(),
        "server_time": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/vr-trading-pit")
def get_vr_trading_pit(quotes: QuoteService = Depends(get_quote_service)):
    return analytics.vr_pit_snapshot(quotes)


@app.websocket("/ws/vr-trading-pit")
async def vr_trading_pit_feed(websocket: WebSocket, quotes: QuoteService = Depends(get_quote_service)):
    await websocket.accept()
    try:
        while True:
            snapshot = await run_in_threadpool(analytics.vr_pit_snapshot, quotes)
            await websocket.send_json(snapshot)
            # returns early when the client disconnects
            try:
                await asyncio.wait_for(websocket.receive_text(), timeout=config.VR_PUSH_INTERVAL)
            except asyncio.TimeoutError:
                pass
    except WebSocketDisconnect:
        log.info("vr trading pit client disconnected")


@app.get("/price/{symbol}")
def get_price(symbol: str, quotes: QuoteService = Depends(get_quote_service)):
    sym = symbol.upper().strip()
    if not sym:
        raise HTTPException(status_code=400, detail="Symbol required")

    quote = quotes.fetch_quote(sym)
    if quote is None:
        raise HTTPException(status_code=404, detail=f"No quote found for {sym}")
    return quote.as_dict()
