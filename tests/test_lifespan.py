"""
tests/test_lifespan.py -- Startup behaviour of the real application lifespan.

The api_client fixture swaps the lifespan out, so these tests drive
api.main.lifespan directly against settings that point at a database the
process cannot open.
"""

from __future__ import annotations

import asyncio

import pytest
from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

import api.main
from core.config import Settings


def _enter_lifespan(app: FastAPI) -> None:
    async def run() -> None:
        async with api.main.lifespan(app):
            pass

    asyncio.run(run())


def test_unreachable_store_aborts_startup(tmp_path, monkeypatch, caplog) -> None:
    """A database path inside a missing directory cannot be opened; startup must fail."""
    unopenable = tmp_path / "missing" / "otpgate.db"
    monkeypatch.setattr(
        api.main,
        "settings",
        Settings(secret_key="k" * 32, database_url=f"sqlite:///{unopenable}"),
    )
    app = FastAPI()

    with pytest.raises(SQLAlchemyError):
        _enter_lifespan(app)

    assert not hasattr(app.state, "auth_service")
    assert "Cannot open account store at startup" in caplog.text


def test_reachable_store_wires_services(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(
        api.main,
        "settings",
        Settings(secret_key="k" * 32, database_url=f"sqlite:///{tmp_path / 'otpgate.db'}"),
    )
    app = FastAPI()

    async def run() -> None:
        async with api.main.lifespan(app):
            assert app.state.store.ping() is True
            assert app.state.auth_service is not None

    asyncio.run(run())
