import os

# Must be set before config/db are imported anywhere
os.environ["TESTING"] = "true"
os.environ["SERVICE_ROLE_KEY"] = "test-service-role-key"
os.environ["CRON_TOKEN"] = "test-cron-token"
os.environ["DESCOPE_PROJECT_ID"] = "P-test"
os.environ["RESEND_API_KEY"] = ""
os.environ["FUNCTIONS_BASE_URL"] = "http://functions.test"

from datetime import datetime, timedelta

import config
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.functions import InvocationResult, get_function_invoker
from db import get_db
from models import (
    Base,
    Fixture,
    FixtureStatus,
    Game,
    GamePlayer,
    GameStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    Pick,
    PickResult,
    PlayerStatus,
    Team,
    User,
    WipeoutMode,
)
from utils.stripe_client import RefundFailed, TransferFailed, get_payment_processor

SERVICE_TOKEN = "test-service-role-key"
CRON_TOKEN = "test-cron-token"

MANAGER_ID = 1000000001
ADMIN_ID = 1000000002
PLAYER_IDS = [2000000001, 2000000002, 2000000003, 2000000004, 2000000005]


class FakeInvoker:
    """Records sibling function calls instead of making HTTP requests."""

    def __init__(self):
        self.calls = []
        self.responses = {}

    def respond(self, function_name, *, ok=True, status_code=200, error=None, payload=None):
        self.responses[function_name] = InvocationResult(
            function_name=function_name,
            ok=ok,
            status_code=status_code,
            payload=payload,
            error=error,
        )

    def invoke(self, function_name, body):
        self.calls.append((function_name, dict(body)))
        return self.responses.get(
            function_name,
            InvocationResult(function_name=function_name, ok=True, status_code=200, payload={}),
        )

    def calls_to(self, function_name):
        return [body for name, body in self.calls if name == function_name]


class FakePaymentProcessor:
    """In-memory stand-in for the Stripe processor."""

    def __init__(self):
        self.refunds = []
        self.transfers = []
        self.sessions = []
        self.connect_accounts = []
        self.account_links = []
        self.failing_intents = set()
        self.failing_destinations = set()
        # Raise errors the Stripe wrapper does not translate
        self.crashing_intents = set()
        self.crashing_destinations = set()

    def create_checkout_session(self, **kwargs):
        self.sessions.append(kwargs)
        session_id = f"cs_test_{len(self.sessions)}"
        return {"session_id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def create_connect_account(self, *, email, country, metadata, idempotency_key):
        self.connect_accounts.append(
            {"email": email, "country": country, "metadata": metadata, "idempotency_key": idempotency_key}
        )
        return {"account_id": f"acct_new{len(self.connect_accounts)}"}

    def create_account_link(self, *, account_id, refresh_url, return_url):
        self.account_links.append({"account_id": account_id, "refresh_url": refresh_url, "return_url": return_url})
        return {"url": f"https://connect.stripe.test/setup/{account_id}"}

    def create_refund(self, *, payment_intent_id, reason, metadata, idempotency_key):
        self.refunds.append(
            {
                "payment_intent_id": payment_intent_id,
                "reason": reason,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        if payment_intent_id in self.crashing_intents:
            raise RuntimeError("connection reset")
        if payment_intent_id in self.failing_intents:
            raise RefundFailed(f"Refund declined for {payment_intent_id}")
        return {"refund_id": f"re_{payment_intent_id}", "status": "pending"}

    def create_transfer(self, *, amount_minor, currency, destination, metadata, idempotency_key):
        self.transfers.append(
            {
                "amount_minor": amount_minor,
                "currency": currency,
                "destination": destination,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        if destination in self.crashing_destinations:
            raise RuntimeError("connection reset")
        if destination in self.failing_destinations:
            raise TransferFailed(f"Transfer to {destination} declined")
        return {"transfer_id": f"tr_{len(self.transfers)}"}


def fake_validate_descope_jwt(token):
    if not token.startswith("descope-"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    descope_id = token[len("descope-"):]
    return {"userId": descope_id, "email": f"{descope_id}@example.com", "name": descope_id}


@pytest.fixture(scope="function")
def test_db():
    """Fresh in-memory database per test with a manager, an admin and five players."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        users = [
            User(account_id=MANAGER_ID, descope_user_id="manager", email="manager@example.com", username="manager"),
            User(account_id=ADMIN_ID, descope_user_id="admin", email="admin@example.com", username="admin", is_admin=True),
        ]
        for index, account_id in enumerate(PLAYER_IDS, start=1):
            users.append(
                User(
                    account_id=account_id,
                    descope_user_id=f"player{index}",
                    email=f"player{index}@example.com",
                    username=f"player{index}",
                    stripe_connect_account_id=f"acct_player{index}",
                )
            )
        db.add_all(users)
        db.commit()

        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def fake_invoker():
    return FakeInvoker()


@pytest.fixture
def fake_processor():
    return FakePaymentProcessor()


@pytest.fixture
def client(test_db, fake_invoker, fake_processor, monkeypatch):
    """TestClient over the full app with storage, triggers and Stripe replaced."""
    from main import app

    monkeypatch.setattr("routers.dependencies.validate_descope_jwt", fake_validate_descope_jwt)
    monkeypatch.setattr(config, "RESEND_API_KEY", "")

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_function_invoker] = lambda: fake_invoker
    app.dependency_overrides[get_payment_processor] = lambda: fake_processor
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def service_headers():
    return {"Authorization": f"Bearer {SERVICE_TOKEN}"}


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {CRON_TOKEN}"}


@pytest.fixture
def auth_headers(test_db):
    """Bearer headers for a seeded user, by account id."""

    def _headers(account_id):
        user = test_db.query(User).filter(User.account_id == account_id).one()
        return {"Authorization": f"Bearer descope-{user.descope_user_id}"}

    return _headers


@pytest.fixture
def make_game(test_db):
    def _make_game(**overrides):
        values = {
            "name": "Test Pool",
            "manager_id": MANAGER_ID,
            "status": GameStatus.PENDING,
            "starting_round": 1,
            "min_players": 2,
            "entry_fee_minor": 1000,
            "currency": "eur",
            "wipeout_mode": WipeoutMode.SPLIT,
        }
        values.update(overrides)
        game = Game(**values)
        test_db.add(game)
        test_db.commit()
        test_db.refresh(game)
        return game

    return _make_game


@pytest.fixture
def add_players(test_db):
    def _add_players(game, user_ids, status=PlayerStatus.ALIVE, **overrides):
        players = []
        for user_id in user_ids:
            player = GamePlayer(
                game_id=game.id,
                user_id=user_id,
                status=status,
                stripe_payment_id=overrides.get("stripe_payment_id", f"pi_entry_0_{user_id}"),
                eliminated_round=overrides.get("eliminated_round"),
            )
            test_db.add(player)
            players.append(player)
        test_db.commit()
        return players

    return _add_players


@pytest.fixture
def make_round(test_db):
    """
    Create fixtures for a round from ``(home, away, home_score, away_score, status)``
    tuples. Teams are created by name on first use. Returns ``{name: team_id}``.
    """

    def _make_round(round_number, fixtures, kickoff=None):
        kickoff = kickoff or datetime.utcnow() - timedelta(hours=2)
        team_ids = {}
        for offset, (home, away, home_score, away_score, status) in enumerate(fixtures):
            for name in (home, away):
                team = test_db.query(Team).filter(Team.name == name).first()
                if team is None:
                    team = Team(name=name)
                    test_db.add(team)
                    test_db.flush()
                team_ids[name] = team.id
            test_db.add(
                Fixture(
                    round=round_number,
                    home_team_id=team_ids[home],
                    away_team_id=team_ids[away],
                    home_score=home_score,
                    away_score=away_score,
                    status=status or FixtureStatus.SCHEDULED,
                    kickoff_time=kickoff + timedelta(minutes=15 * offset),
                )
            )
        test_db.commit()
        return team_ids

    return _make_round


@pytest.fixture
def add_payment(test_db):
    def _add_payment(
        game,
        user_id,
        *,
        status=PaymentStatus.SUCCEEDED,
        payment_type=PaymentType.ENTRY,
        rebuy_round=0,
        intent="default",
        entry_fee_minor=None,
    ):
        entry_fee = game.entry_fee_minor if entry_fee_minor is None else entry_fee_minor
        payment = Payment(
            game_id=game.id,
            user_id=user_id,
            payment_type=payment_type,
            rebuy_round=rebuy_round,
            status=status,
            currency=game.currency,
            entry_fee_minor=entry_fee,
            processing_fee_minor=54,
            total_amount_minor=entry_fee + 54,
            stripe_payment_intent_id=(
                f"pi_{payment_type}_{rebuy_round}_{user_id}" if intent == "default" else intent
            ),
        )
        test_db.add(payment)
        test_db.commit()
        test_db.refresh(payment)
        return payment

    return _add_payment


@pytest.fixture
def manager_id():
    return MANAGER_ID


@pytest.fixture
def admin_id():
    return ADMIN_ID


@pytest.fixture
def player_ids():
    return list(PLAYER_IDS)


@pytest.fixture
def add_pick(test_db):
    def _add_pick(game, user_id, round_number, team_id, result=PickResult.PENDING, auto_assigned=False):
        pick = Pick(
            game_id=game.id,
            user_id=user_id,
            round=round_number,
            team_id=team_id,
            result=result,
            auto_assigned=auto_assigned,
        )
        test_db.add(pick)
        test_db.commit()
        test_db.refresh(pick)
        return pick

    return _add_pick
