"""Concurrent link and exchange against one pairing code."""

import threading
from concurrent.futures import ThreadPoolExecutor

from sqlmodel import Session, select

from devicelink.database import engine
from devicelink.models.registration import PairingRegistration
from devicelink.models.token import DeviceToken
from devicelink.schemas.identity import IdentitySession
from devicelink.services.errors import CodeAlreadyLinked, PairingError
from devicelink.services.pairing_service import exchange_code, link_code, register_device

WORKERS = 8


def _race(fn, calls: list[tuple]) -> list:
    """Run ``fn(*args, session)`` for every args tuple at once, each on its own session."""
    barrier = threading.Barrier(len(calls))

    def run(args):
        with Session(engine) as session:
            barrier.wait()
            try:
                return fn(*args, session)
            except PairingError as e:
                return e

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(run, calls))


def _register() -> dict:
    with Session(engine) as session:
        return register_device("127.0.0.1", session)


def test_concurrent_links_bind_exactly_one_user(client):
    reg = _register()
    calls = [(reg["code"], IdentitySession.signed_in(f"racer-{i}")) for i in range(WORKERS)]

    results = _race(link_code, calls)

    winners = [r for r in results if r == reg["device_id"]]
    losers = [r for r in results if isinstance(r, CodeAlreadyLinked)]
    assert len(winners) == 1
    assert len(losers) == WORKERS - 1

    with Session(engine) as session:
        row = session.get(PairingRegistration, reg["device_id"])
        assert row.linked is True
        assert row.user_id.startswith("racer-")


def test_concurrent_exchanges_mint_one_token(client):
    reg = _register()
    with Session(engine) as session:
        link_code(reg["code"], IdentitySession.signed_in("user-race"), session)

    calls = [(reg["device_id"], reg["code"], f"10.1.0.{i}") for i in range(WORKERS)]
    results = _race(exchange_code, calls)

    errors = [r for r in results if isinstance(r, PairingError)]
    assert errors == []
    assert len({r.token for r in results}) == 1
    assert {r.user_id for r in results} == {"user-race"}

    with Session(engine) as session:
        tokens = session.exec(select(DeviceToken).where(DeviceToken.device_id == reg["device_id"])).all()
        assert len(tokens) == 1
        assert tokens[0].id == results[0].token_id
