from models import Game, GameStatus, Notification, Payout, PayoutStatus, PlayerStatus, User


def _payouts(client, headers, game_id):
    return client.post("/functions/process-payouts", json={"game_id": game_id}, headers=headers)


def _payout_rows(test_db, game_id):
    test_db.expire_all()
    return {p.user_id: p for p in test_db.query(Payout).filter(Payout.game_id == game_id).all()}


def _completed_game(make_game, add_players, add_payment, player_ids, *, fees=(1000, 1000, 1001)):
    p1, p2, p3 = player_ids[:3]
    game = make_game(status=GameStatus.COMPLETED, current_round=4)
    add_players(game, [p1, p2])
    add_players(game, [p3], status=PlayerStatus.ELIMINATED, eliminated_round=4)
    for user_id, fee in zip((p1, p2, p3), fees):
        add_payment(game, user_id, entry_fee_minor=fee)
    return game


def test_splits_prize_pool_across_winners(
    client, service_headers, test_db, make_game, add_players, add_payment, fake_processor, player_ids
):
    p1, p2 = player_ids[:2]
    game = _completed_game(make_game, add_players, add_payment, player_ids)

    response = _payouts(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["prize_pool_minor"] == 3001
    assert payload["winners"] == 2
    assert payload["completed"] == 2
    assert payload["failed"] == 0

    transfers = {t["destination"]: t for t in fake_processor.transfers}
    assert transfers["acct_player1"]["amount_minor"] == 1501
    assert transfers["acct_player2"]["amount_minor"] == 1500
    assert sum(t["amount_minor"] for t in fake_processor.transfers) == 3001
    assert transfers["acct_player1"]["idempotency_key"] == f"payout:{game.id}:{p1}:1501"

    rows = _payout_rows(test_db, game.id)
    assert rows[p1].status == PayoutStatus.COMPLETED
    assert rows[p1].stripe_transfer_id is not None
    assert rows[p2].amount_minor == 1500
    assert test_db.query(Game).filter(Game.id == game.id).one().prize_pool_minor == 3001

    notices = test_db.query(Notification).filter(Notification.type == "payout_processed").all()
    assert sorted(n.user_id for n in notices) == [p1, p2]
    assert any("15.01 EUR" in n.body for n in notices)


def test_rerun_skips_completed_payouts(
    client, service_headers, make_game, add_players, add_payment, fake_processor, player_ids
):
    game = _completed_game(make_game, add_players, add_payment, player_ids)
    _payouts(client, service_headers, game.id)

    response = _payouts(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["already_paid"] == 2
    assert payload["completed"] == 0
    assert len(fake_processor.transfers) == 2


def test_winner_without_connect_account_is_recorded_as_failed(
    client, service_headers, test_db, make_game, add_players, add_payment, fake_processor, player_ids, manager_id
):
    p1, p2 = player_ids[:2]
    user = test_db.query(User).filter(User.account_id == p2).one()
    user.stripe_connect_account_id = None
    test_db.commit()
    game = _completed_game(make_game, add_players, add_payment, player_ids)

    response = _payouts(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["completed"] == 1
    assert payload["failed"] == 1
    assert payload["winners_without_connect"] == [p2]
    assert [t["destination"] for t in fake_processor.transfers] == ["acct_player1"]

    rows = _payout_rows(test_db, game.id)
    assert rows[p2].status == PayoutStatus.FAILED
    assert rows[p2].failure_reason == "no_connect_account"
    alert = test_db.query(Notification).filter(Notification.type == "payout_batch_failures").one()
    assert alert.user_id == manager_id
    assert alert.data["winners_without_connect"] == [p2]


def test_failed_transfer_is_retried_on_next_run(
    client, service_headers, test_db, make_game, add_players, add_payment, fake_processor, player_ids
):
    p1, p2 = player_ids[:2]
    game = _completed_game(make_game, add_players, add_payment, player_ids)
    fake_processor.failing_destinations.add("acct_player2")

    first = _payouts(client, service_headers, game.id)
    assert first.json()["completed"] == 1
    assert first.json()["failed"] == 1
    rows = _payout_rows(test_db, game.id)
    assert rows[p2].status == PayoutStatus.FAILED
    assert "declined" in rows[p2].failure_reason

    fake_processor.failing_destinations.clear()
    second = _payouts(client, service_headers, game.id)

    assert second.json()["already_paid"] == 1
    assert second.json()["completed"] == 1
    rows = _payout_rows(test_db, game.id)
    assert rows[p2].status == PayoutStatus.COMPLETED
    assert rows[p2].failure_reason is None


def test_refunded_entries_do_not_count_towards_pool(
    client, service_headers, make_game, add_players, add_payment, player_ids
):
    p1, p2 = player_ids[:2]
    game = make_game(status=GameStatus.COMPLETED, current_round=2)
    add_players(game, [p1, p2])
    add_payment(game, p1)
    add_payment(game, p2, status="refunded")

    response = _payouts(client, service_headers, game.id)

    payload = response.json()
    assert payload["prize_pool_minor"] == 1000
    assert payload["completed"] == 2


def test_free_game_has_nothing_to_distribute(client, service_headers, make_game, add_players, player_ids, fake_processor):
    game = make_game(status=GameStatus.COMPLETED, entry_fee_minor=0)
    add_players(game, player_ids[:2])

    response = _payouts(client, service_headers, game.id)

    assert response.status_code == 200
    assert response.json()["message"] == "No prize pool to distribute."
    assert fake_processor.transfers == []


def test_incomplete_game_returns_conflict(client, service_headers, make_game):
    game = make_game(status=GameStatus.ACTIVE, current_round=1)

    response = _payouts(client, service_headers, game.id)

    assert response.status_code == 409
    assert response.json()["detail"]["status"] == GameStatus.ACTIVE


def test_players_cannot_trigger_payouts(client, auth_headers, make_game, player_ids):
    game = make_game(status=GameStatus.COMPLETED)

    response = _payouts(client, auth_headers(player_ids[0]), game.id)

    assert response.status_code == 403


def test_unexpected_transfer_error_does_not_abort_batch(
    client, service_headers, test_db, make_game, add_players, add_payment, fake_processor, player_ids
):
    p1, p2 = player_ids[:2]
    game = _completed_game(make_game, add_players, add_payment, player_ids)
    fake_processor.crashing_destinations.add("acct_player1")

    response = _payouts(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["completed"] == 1
    assert payload["failed"] == 1

    rows = _payout_rows(test_db, game.id)
    assert rows[p1].status == PayoutStatus.FAILED
    assert rows[p1].failure_reason == "connection reset"
    assert rows[p2].status == PayoutStatus.COMPLETED
    assert [t["destination"] for t in fake_processor.transfers] == ["acct_player1", "acct_player2"]
