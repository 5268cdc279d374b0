import argparse
import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promo_engine.db.session import SessionLocal
from promo_engine.services import admin as admin_service
from promo_engine.services import validation


def _format_row(promotion, status: str) -> str:
    limit = promotion.usage_limit if promotion.usage_limit is not None else "-"
    return f"{promotion.code:<20} {status:<12} {promotion.used_count}/{limit}"


async def list_promotions(
    status: str | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
) -> list[str]:
    async with session_factory() as session:
        promotions = await admin_service.list_promotions(session, status_filter=status)
        rows = [_format_row(p, admin_service.promotion_status(p)) for p in promotions]
    for row in rows:
        print(row)
    if not rows:
        print("No promotions found")
    return rows


async def toggle_promotion(
    code: str,
    *,
    session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
) -> bool:
    async with session_factory() as session:
        promotion = await validation.get_promotion_by_code(session, code=code)
        if promotion is None:
            raise SystemExit(f"Promotion not found: {validation.normalize_code(code)}")
        promotion = await admin_service.toggle_active(session, promotion)
        print(f"{promotion.code} is now {'active' if promotion.is_active else 'inactive'}")
        return promotion.is_active


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Promotion operator utilities")
    subparsers = parser.add_subparsers(dest="command")

    list_cmd = subparsers.add_parser("list-promotions", help="List promotions with status and usage")
    list_cmd.add_argument("--status", choices=admin_service.PROMOTION_STATUSES, help="Only show this status")

    toggle_cmd = subparsers.add_parser("toggle-promotion", help="Flip the active flag of a promotion")
    toggle_cmd.add_argument("code", help="Promotion code")
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "list-promotions":
        asyncio.run(list_promotions(args.status))
        return True

    if args.command == "toggle-promotion":
        asyncio.run(toggle_promotion(args.code))
        return True

    return False


def main():
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
