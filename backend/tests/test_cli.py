import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from promo_engine import cli


def test_list_promotions_prints_status_and_usage(session_factory, seed_promotion, capsys) -> None:
    now = datetime.now(timezone.utc)
    seed_promotion(session_factory, code="LIVE", usage_limit=10, used_count=3)
    seed_promotion(session_factory, code="OLD", start_date=now - timedelta(days=5), end_date=now - timedelta(days=1))

    rows = asyncio.run(cli.list_promotions(session_factory=session_factory))
    assert len(rows) == 2

    expired_only = asyncio.run(cli.list_promotions("expired", session_factory=session_factory))
    assert len(expired_only) == 1
    assert expired_only[0].split() == ["OLD", "expired", "0/-"]

    out = capsys.readouterr().out
    assert "LIVE" in out
    assert "3/10" in out


def test_toggle_promotion(session_factory, seed_promotion, capsys) -> None:
    seed_promotion(session_factory, code="FLIP")

    assert asyncio.run(cli.toggle_promotion("flip", session_factory=session_factory)) is False
    assert asyncio.run(cli.toggle_promotion("FLIP", session_factory=session_factory)) is True
    assert "FLIP is now active" in capsys.readouterr().out


def test_toggle_unknown_promotion(session_factory) -> None:
    with pytest.raises(SystemExit):
        asyncio.run(cli.toggle_promotion("NOPE", session_factory=session_factory))


def test_parser_knows_both_commands() -> None:
    parser = cli._build_parser()
    assert parser.parse_args(["list-promotions", "--status", "active"]).status == "active"
    assert parser.parse_args(["toggle-promotion", "SALE20"]).code == "SALE20"
    with pytest.raises(SystemExit):
        parser.parse_args(["list-promotions", "--status", "bogus"])
