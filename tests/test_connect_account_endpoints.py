from models import GameStatus, User
from utils.stripe_client import ConnectAccountFailed


def _connect(client, headers, origin=None):
    if origin:
        headers = {**headers, "Origin": origin}
    return client.post("/functions/create-connect-account", headers=headers)


def _user(test_db, account_id):
    test_db.expire_all()
    return test_db.query(User).filter(User.account_id == account_id).one()


def test_creates_and_stores_connect_account(client, test_db, auth_headers, fake_processor, manager_id):
    response = _connect(client, auth_headers(manager_id), origin="https://pool.example.com")

    assert response.status_code == 200
    payload = response.json()
    assert payload == {
        "account_id": "acct_new1",
        "onboarding_url": "https://connect.stripe.test/setup/acct_new1",
        "created": True,
    }
    assert _user(test_db, manager_id).stripe_connect_account_id == "acct_new1"

    account = fake_processor.connect_accounts[0]
    assert account["email"] == "manager@example.com"
    assert account["country"] == "US"
    assert account["idempotency_key"] == f"connect:{manager_id}"
    link = fake_processor.account_links[0]
    assert link["refresh_url"] == "https://pool.example.com/profile?connect=refresh"
    assert link["return_url"] == "https://pool.example.com/profile?connect=complete"


def test_existing_account_only_gets_a_new_link(client, auth_headers, fake_processor, player_ids):
    response = _connect(client, auth_headers(player_ids[0]))

    assert response.status_code == 200
    assert response.json()["account_id"] == "acct_player1"
    assert response.json()["created"] is False
    assert fake_processor.connect_accounts == []
    assert fake_processor.account_links[0]["return_url"].endswith("/profile?connect=complete")


def test_second_call_reuses_stored_account(client, auth_headers, fake_processor, manager_id):
    _connect(client, auth_headers(manager_id))
    second = _connect(client, auth_headers(manager_id))

    assert second.json()["account_id"] == "acct_new1"
    assert second.json()["created"] is False
    assert len(fake_processor.connect_accounts) == 1
    assert len(fake_processor.account_links) == 2


def test_onboarded_winner_receives_payout(
    client, test_db, auth_headers, service_headers, make_game, add_players, add_payment, fake_processor, player_ids
):
    p1 = player_ids[0]
    winner = _user(test_db, p1)
    winner.stripe_connect_account_id = None
    test_db.commit()
    game = make_game(status=GameStatus.COMPLETED, current_round=3)
    add_players(game, [p1])
    add_payment(game, p1)

    first = client.post("/functions/process-payouts", json={"game_id": game.id}, headers=service_headers)
    assert first.json()["winners_without_connect"] == [p1]

    _connect(client, auth_headers(p1))
    second = client.post("/functions/process-payouts", json={"game_id": game.id}, headers=service_headers)

    assert second.json()["completed"] == 1
    assert fake_processor.transfers[-1]["destination"] == "acct_new1"
    assert fake_processor.transfers[-1]["amount_minor"] == 1000


def test_processor_failure_returns_server_error(client, test_db, auth_headers, fake_processor, manager_id, monkeypatch):
    def rejected(**kwargs):
        raise ConnectAccountFailed("Connect is not enabled")

    monkeypatch.setattr(fake_processor, "create_connect_account", rejected)

    response = _connect(client, auth_headers(manager_id))

    assert response.status_code == 500
    assert _user(test_db, manager_id).stripe_connect_account_id is None


def test_requires_player_token(client):
    assert client.post("/functions/create-connect-account").status_code == 401
