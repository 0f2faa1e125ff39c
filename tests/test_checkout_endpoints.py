from datetime import datetime, timedelta

from models import GameStatus, Payment, PaymentStatus, PaymentType, PlayerStatus, WipeoutMode


def _checkout(client, headers, game_id):
    return client.post("/functions/create-checkout", json={"game_id": game_id}, headers=headers)


def _rebuy_checkout(client, headers, game_id):
    return client.post("/functions/create-rebuy-checkout", json={"game_id": game_id}, headers=headers)


def test_entry_checkout_creates_pending_payment_with_fee(
    client, auth_headers, test_db, make_game, fake_processor, player_ids
):
    p1 = player_ids[0]
    game = make_game()

    response = _checkout(client, auth_headers(p1), game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["payment_type"] == PaymentType.ENTRY
    assert payload["entry_fee_minor"] == 1000
    assert payload["processing_fee_minor"] == 54
    assert payload["total_minor"] == 1054
    assert payload["session_id"] == "cs_test_1"
    assert payload["checkout_url"].endswith("cs_test_1")

    session = fake_processor.sessions[0]
    assert session["amount_minor"] == 1054
    assert session["currency"] == "eur"
    assert session["customer_email"] == "player1@example.com"
    assert session["success_url"].endswith(f"/games/{game.id}?checkout=success")
    assert session["cancel_url"].endswith(f"/games/{game.id}?checkout=cancelled")
    assert session["metadata"]["payment_id"] == str(payload["payment_id"])
    assert session["metadata"]["payment_type"] == "entry"

    test_db.expire_all()
    payment = test_db.query(Payment).filter(Payment.id == payload["payment_id"]).one()
    assert payment.status == PaymentStatus.PENDING
    assert payment.user_id == p1
    assert payment.stripe_checkout_session_id == "cs_test_1"


def test_retrying_checkout_reuses_the_payment_row(
    client, auth_headers, test_db, make_game, fake_processor, player_ids
):
    game = make_game()
    headers = auth_headers(player_ids[0])

    first = _checkout(client, headers, game.id)
    second = _checkout(client, headers, game.id)

    assert second.status_code == 200
    assert second.json()["payment_id"] == first.json()["payment_id"]
    assert second.json()["session_id"] == "cs_test_2"
    assert test_db.query(Payment).count() == 1
    keys = [session["idempotency_key"] for session in fake_processor.sessions]
    assert keys[0] != keys[1]


def test_entry_checkout_rejections(
    client, auth_headers, make_game, add_players, add_payment, player_ids
):
    p1, p2, p3 = player_ids[:3]

    started = make_game(status=GameStatus.ACTIVE, current_round=1)
    response = _checkout(client, auth_headers(p1), started.id)
    assert response.status_code == 400
    assert response.json()["detail"] == "This game has already started"

    free = make_game(entry_fee_minor=0)
    response = _checkout(client, auth_headers(p1), free.id)
    assert response.json()["detail"] == "This game is free and does not require checkout"

    joined = make_game()
    add_players(joined, [p1])
    add_players(joined, [p2], status=PlayerStatus.KICKED)
    assert _checkout(client, auth_headers(p1), joined.id).json()["detail"] == "You are already part of this game"
    assert _checkout(client, auth_headers(p2), joined.id).json()["detail"] == "You were removed from this game"

    full = make_game(max_players=1)
    add_players(full, [p1])
    assert _checkout(client, auth_headers(p3), full.id).json()["detail"] == "This game is full"

    paid = make_game()
    add_payment(paid, p3)
    assert _checkout(client, auth_headers(p3), paid.id).json()["detail"] == "A payment for this game already exists"


def test_cancelled_payment_can_be_restarted(client, auth_headers, test_db, make_game, add_payment, player_ids):
    game = make_game()
    cancelled = add_payment(game, player_ids[0], status=PaymentStatus.CANCELLED)

    response = _checkout(client, auth_headers(player_ids[0]), game.id)

    assert response.status_code == 200
    assert response.json()["payment_id"] == cancelled.id
    test_db.expire_all()
    payment = test_db.query(Payment).filter(Payment.id == cancelled.id).one()
    assert payment.status == PaymentStatus.PENDING
    assert payment.stripe_payment_intent_id is None


def test_checkout_requires_login(client, make_game):
    game = make_game()

    assert client.post("/functions/create-checkout", json={"game_id": game.id}).status_code == 401
    response = _checkout(client, {"Authorization": "Bearer not-a-session"}, game.id)
    assert response.status_code == 401


def _rebuy_game(make_game, add_players, player_ids, **overrides):
    values = {
        "status": GameStatus.ACTIVE,
        "wipeout_mode": WipeoutMode.REBUY,
        "current_round": 3,
        "rebuy_deadline": datetime.utcnow() + timedelta(hours=12),
    }
    values.update(overrides)
    game = make_game(**values)
    add_players(game, player_ids[:2], status=PlayerStatus.ELIMINATED, eliminated_round=2)
    return game


def test_rebuy_checkout_for_eliminated_player(
    client, auth_headers, test_db, make_game, add_players, fake_processor, player_ids
):
    game = _rebuy_game(make_game, add_players, player_ids)

    response = _rebuy_checkout(client, auth_headers(player_ids[0]), game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["payment_type"] == PaymentType.REBUY
    assert payload["rebuy_round"] == 3
    assert fake_processor.sessions[0]["metadata"]["rebuy_round"] == "3"
    assert fake_processor.sessions[0]["success_url"].endswith("?rebuy=success")

    duplicate = _rebuy_checkout(client, auth_headers(player_ids[0]), game.id)
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "A rebuy payment already exists for this round"


def test_rebuy_checkout_rejections(client, auth_headers, make_game, add_players, player_ids):
    p1, p2, p3, p4 = player_ids[:4]

    closed = _rebuy_game(make_game, add_players, player_ids, rebuy_deadline=datetime.utcnow() - timedelta(minutes=1))
    assert _rebuy_checkout(client, auth_headers(p1), closed.id).json()["detail"] == "The rebuy window is closed"

    split = _rebuy_game(make_game, add_players, player_ids, wipeout_mode=WipeoutMode.SPLIT)
    assert _rebuy_checkout(client, auth_headers(p1), split.id).json()["detail"] == "This game does not support rebuys"

    game = _rebuy_game(make_game, add_players, player_ids)
    add_players(game, [p3])
    add_players(game, [p4], status=PlayerStatus.KICKED)
    assert _rebuy_checkout(client, auth_headers(p3), game.id).json()["detail"] == "You are still alive in this game"
    assert _rebuy_checkout(client, auth_headers(p4), game.id).json()["detail"] == "Kicked players cannot rebuy"
    assert _rebuy_checkout(client, auth_headers(player_ids[4]), game.id).status_code == 403
