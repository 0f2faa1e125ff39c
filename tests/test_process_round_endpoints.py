from datetime import datetime, timedelta

from models import (
    Game,
    GamePlayer,
    GameStatus,
    Notification,
    PaymentType,
    Pick,
    PlayerStatus,
    WipeoutMode,
)
from routers.games.auto_assign import NO_AVAILABLE_TEAM
from routers.games.service import CANCELLATION_REASON, SINGLE_REBUYER_REASON


def _process_round(client, headers, game_id, **body):
    return client.post("/functions/process-round", json={"game_id": game_id, **body}, headers=headers)


def _players(test_db, game_id):
    test_db.expire_all()
    return {
        player.user_id: player
        for player in test_db.query(GamePlayer).filter(GamePlayer.game_id == game_id).all()
    }


def test_requires_service_or_admin(client, make_game, auth_headers, player_ids, admin_id):
    game = make_game()

    response = client.post("/functions/process-round", json={"game_id": game.id})
    assert response.status_code == 401

    response = _process_round(client, auth_headers(player_ids[0]), game.id)
    assert response.status_code == 403

    response = _process_round(client, auth_headers(admin_id), game.id)
    assert response.status_code == 200


def test_missing_or_unknown_game(client, service_headers):
    response = client.post("/functions/process-round", json={}, headers=service_headers)
    assert response.status_code == 400

    response = _process_round(client, service_headers, "does-not-exist")
    assert response.status_code == 404


def test_malformed_body_is_a_bad_request(client, service_headers):
    response = client.post(
        "/functions/process-round",
        json={"game_id": "g", "round": "first"},
        headers=service_headers,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid request body"


def test_round_not_locked_returns_conflict(client, service_headers, make_game, add_players, make_round, player_ids):
    game = make_game()
    add_players(game, player_ids[:2])
    make_round(1, [("Arsenal", "Chelsea", None, None, None)], kickoff=datetime.utcnow() + timedelta(hours=2))

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert "not locked yet" in detail["message"]
    assert "locks_at" in detail


def test_terminal_game_is_a_noop(client, service_headers, make_game):
    game = make_game(status=GameStatus.COMPLETED, current_round=4)

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == GameStatus.COMPLETED
    assert payload["message"] == "Game is completed; nothing to do."


def test_under_subscribed_game_is_cancelled_and_refund_triggered(
    client, service_headers, test_db, make_game, add_players, make_round, fake_invoker, player_ids
):
    game = make_game(min_players=4)
    add_players(game, player_ids[:3])
    make_round(1, [("Arsenal", "Chelsea", None, None, None)])

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == GameStatus.CANCELLED
    assert payload["players_at_lock"] == 3
    assert payload["refund_trigger"]["triggered"] is True

    assert fake_invoker.calls_to("process-refund") == [
        {"game_id": game.id, "scenario": "game_cancelled", "reason": CANCELLATION_REASON}
    ]
    test_db.expire_all()
    assert test_db.query(Game).filter(Game.id == game.id).one().status == GameStatus.CANCELLED
    assert test_db.query(Pick).count() == 0


def test_failed_refund_trigger_alerts_manager(
    client, service_headers, test_db, make_game, add_players, make_round, fake_invoker, player_ids, manager_id
):
    fake_invoker.respond("process-refund", ok=False, status_code=500, error="boom")
    game = make_game(min_players=4)
    add_players(game, player_ids[:3])
    make_round(1, [("Arsenal", "Chelsea", None, None, None)])

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == GameStatus.CANCELLED
    assert payload["refund_trigger"] == {"triggered": False, "status_code": 500, "error": "boom"}

    alert = test_db.query(Notification).filter(Notification.type == "refund_trigger_failed").one()
    assert alert.user_id == manager_id
    assert alert.data["game_id"] == game.id


def test_auto_assigns_alphabetically_first_team_and_activates_game(
    client, service_headers, test_db, make_game, add_players, make_round, add_pick, player_ids
):
    game = make_game()
    add_players(game, player_ids[:3])
    teams = make_round(
        1,
        [
            ("Chelsea", "Arsenal", None, None, None),
            ("Everton", "Brentford", None, None, None),
        ],
    )
    add_pick(game, player_ids[0], 1, teams["Chelsea"])

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == GameStatus.ACTIVE
    assert payload["assigned"] == 2
    assert payload["skipped"] == 1
    assert payload["eliminated"] == 0

    test_db.expire_all()
    refreshed = test_db.query(Game).filter(Game.id == game.id).one()
    assert refreshed.current_round == 1
    picks = {pick.user_id: pick for pick in test_db.query(Pick).filter(Pick.game_id == game.id).all()}
    assert picks[player_ids[0]].team_id == teams["Chelsea"]
    assert picks[player_ids[0]].auto_assigned is False
    for user_id in player_ids[1:3]:
        assert picks[user_id].team_id == teams["Arsenal"]
        assert picks[user_id].auto_assigned is True

    # Running again leaves everything as it is
    response = _process_round(client, service_headers, game.id)
    assert response.status_code == 200
    assert response.json()["assigned"] == 0
    assert response.json()["skipped"] == 3
    assert test_db.query(Pick).filter(Pick.game_id == game.id).count() == 3


def test_player_without_unused_team_is_eliminated(
    client, service_headers, test_db, make_game, add_players, make_round, add_pick, player_ids
):
    game = make_game(starting_round=3, status=GameStatus.ACTIVE, current_round=3)
    add_players(game, player_ids[:2])
    teams = make_round(3, [("Arsenal", "Chelsea", None, None, None)])
    add_pick(game, player_ids[0], 1, teams["Arsenal"], result="won")
    add_pick(game, player_ids[0], 2, teams["Chelsea"], result="won")

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["assigned"] == 1
    assert payload["eliminated"] == 1

    players = _players(test_db, game.id)
    exhausted = players[player_ids[0]]
    assert exhausted.status == PlayerStatus.ELIMINATED
    assert exhausted.eliminated_round == 3
    assert exhausted.kick_reason == NO_AVAILABLE_TEAM
    assert players[player_ids[1]].status == PlayerStatus.ALIVE

    notification = test_db.query(Notification).filter(Notification.type == "eliminated").one()
    assert notification.user_id == player_ids[0]
    assert notification.data["reason"] == NO_AVAILABLE_TEAM


def _wiped_out_rebuy_game(make_game, add_players, player_ids, *, deadline):
    game = make_game(
        status=GameStatus.ACTIVE,
        wipeout_mode=WipeoutMode.REBUY,
        current_round=3,
        rebuy_deadline=deadline,
    )
    add_players(game, player_ids[:3], status=PlayerStatus.ELIMINATED, eliminated_round=2)
    return game


def test_open_rebuy_window_waits(client, service_headers, test_db, make_game, add_players, player_ids):
    game = _wiped_out_rebuy_game(
        make_game, add_players, player_ids, deadline=datetime.utcnow() + timedelta(hours=5)
    )

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 200
    assert "Rebuy window is still open" in response.json()["message"]
    players = _players(test_db, game.id)
    assert all(player.status == PlayerStatus.ELIMINATED for player in players.values())


def test_expired_window_with_two_rebuyers_restores_them(
    client, service_headers, test_db, make_game, add_players, make_round, add_payment, player_ids
):
    game = _wiped_out_rebuy_game(
        make_game, add_players, player_ids, deadline=datetime.utcnow() - timedelta(minutes=1)
    )
    for user_id in player_ids[:2]:
        add_payment(game, user_id, payment_type=PaymentType.REBUY, rebuy_round=3)
    teams = make_round(3, [("Arsenal", "Chelsea", None, None, None)])

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["rebuy_resolution"]["mode"] == "continue"
    assert payload["rebuy_resolution"]["rebuyers"] == player_ids[:2]
    assert payload["assigned"] == 2

    players = _players(test_db, game.id)
    for user_id in player_ids[:2]:
        assert players[user_id].status == PlayerStatus.ALIVE
        assert players[user_id].is_rebuy is True
        assert players[user_id].eliminated_round is None
    assert players[player_ids[2]].status == PlayerStatus.ELIMINATED

    refreshed = test_db.query(Game).filter(Game.id == game.id).one()
    assert refreshed.status == GameStatus.ACTIVE
    assert refreshed.rebuy_deadline is None
    assigned = test_db.query(Pick).filter(Pick.game_id == game.id, Pick.round == 3).all()
    assert {pick.team_id for pick in assigned} == {teams["Arsenal"]}


def test_expired_window_with_single_rebuyer_refunds_and_completes(
    client, service_headers, test_db, make_game, add_players, add_payment, fake_invoker, player_ids
):
    game = _wiped_out_rebuy_game(
        make_game, add_players, player_ids, deadline=datetime.utcnow() - timedelta(minutes=1)
    )
    add_payment(game, player_ids[0], payment_type=PaymentType.REBUY, rebuy_round=3)

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == GameStatus.COMPLETED
    assert payload["rebuy_resolution"]["mode"] == "single_rebuyer"
    assert payload["rebuy_resolution"]["rebuyers"] == [player_ids[0]]
    assert sorted(payload["rebuy_resolution"]["winners"]) == player_ids[:3]
    assert payload["refund_trigger"]["triggered"] is True
    assert payload["payout_trigger"]["triggered"] is True

    assert fake_invoker.calls_to("process-refund") == [
        {
            "game_id": game.id,
            "scenario": "single_rebuyer",
            "user_id": player_ids[0],
            "rebuy_round": 3,
            "reason": SINGLE_REBUYER_REASON,
        }
    ]
    assert fake_invoker.calls_to("process-payouts") == [{"game_id": game.id}]

    players = _players(test_db, game.id)
    assert all(player.status == PlayerStatus.ALIVE for player in players.values())
    assert all(player.is_rebuy is False for player in players.values())
    refreshed = test_db.query(Game).filter(Game.id == game.id).one()
    assert refreshed.status == GameStatus.COMPLETED
    assert refreshed.rebuy_deadline is None

    winners = test_db.query(Notification).filter(Notification.type == "game_won").all()
    assert sorted(n.user_id for n in winners) == player_ids[:3]


def test_expired_window_without_rebuyers_completes_with_last_cohort(
    client, service_headers, test_db, make_game, add_players, fake_invoker, player_ids
):
    game = _wiped_out_rebuy_game(
        make_game, add_players, player_ids, deadline=datetime.utcnow() - timedelta(minutes=1)
    )

    response = _process_round(client, service_headers, game.id)

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == GameStatus.COMPLETED
    assert payload["rebuy_resolution"]["mode"] == "no_rebuyers"
    assert payload["refund_trigger"] is None
    assert fake_invoker.calls_to("process-refund") == []
    assert fake_invoker.calls_to("process-payouts") == [{"game_id": game.id}]

    # A second run finds a completed game and does nothing
    response = _process_round(client, service_headers, game.id)
    assert response.status_code == 200
    assert response.json()["message"] == "Game is completed; nothing to do."
    assert len(fake_invoker.calls_to("process-payouts")) == 1
