import random

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import get_db
from main import app, get_quote_service
from models import Base, User
from quotes import MockProvider, Quote, QuoteService

TEST_DATABASE_URL = "sqlite://"


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FixedQuotes:
    """Quote source with prices set by the test."""

    def __init__(self, **prices):
        self.prices = prices

    def fetch_quote(self, symbol):
        price = self.prices.get(symbol)
        if price is None:
            return None
        return Quote(symbol=symbol, price=price, volume=1000, percent_change=1.0)

    def historical_options(self, symbol):
        return None

    def news_sentiment(self):
        return None


@pytest.fixture
def db_engine():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db_session):
    def _make(username="trader", balance=1000.0):
        user = User(
            username=username,
            name=username.title(),
            email=f"{username}@example.com",
            password_hash="x",
            balance=balance,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def quote_service(clock):
    return QuoteService(mock=MockProvider(rng=random.Random(7)), ttl=300, timer=clock)


@pytest.fixture
def client(session_factory, quote_service):
    def override_get_db():
        with session_factory() as session:
            try:
                yield session
            except Exception:
                session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_quote_service] = lambda: quote_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    resp = client.post("/api/signup", json={
        "username": "alice",
        "name": "Alice",
        "email": "alice@example.com",
        "password": "secret123",
    })
    token = resp.json()["token"]
    return {"Authorization": f"Bearer {token}"}
