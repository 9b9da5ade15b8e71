import argparse
import asyncio

from cardpoints.api.app import run as run_api
from cardpoints.api.dependencies import get_reward_service, get_usage_ledger
from cardpoints.config import settings
from cardpoints.domain.models import PaymentInstrument
from cardpoints.logging_config import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="cardpoints unified entrypoint")
    parser.add_argument(
        "mode",
        nargs="?",
        choices=["api", "initdb", "simulate"],
        default="api",
        help="Run mode: api (default), initdb, simulate",
    )
    parser.add_argument("--card-type", help="Card type id to simulate against")
    parser.add_argument("--instrument", default="cli", help="Payment instrument id")
    parser.add_argument("--statement-day", type=int, default=1)
    parser.add_argument("--amount", type=float, help="Transaction amount")
    parser.add_argument("--currency", default="SGD")
    parser.add_argument("--mcc")
    parser.add_argument("--merchant")
    parser.add_argument("--online", action="store_true")
    parser.add_argument("--contactless", action="store_true")
    return parser


async def init_db() -> None:
    ledger = get_usage_ledger()
    await ledger.create_schema()
    await ledger.dispose()
    print(f"Usage ledger ready at {settings.ledger_database_url}")


async def simulate(args: argparse.Namespace) -> None:
    instrument = PaymentInstrument(
        id=args.instrument,
        card_type_id=args.card_type,
        statement_day=args.statement_day,
    )
    ledger = get_usage_ledger()
    await ledger.create_schema()
    try:
        result = await get_reward_service().simulate_rewards(
            amount=args.amount,
            currency=args.currency,
            instrument=instrument,
            mcc=args.mcc,
            merchant_name=args.merchant,
            is_online=args.online,
            is_contactless=args.contactless,
        )
    finally:
        await ledger.dispose()

    rule_name = result.applied_rule.name if result.applied_rule else "none"
    print(f"Rule: {rule_name}")
    print(
        f"Points: {result.total_points} {result.points_currency} "
        f"(base {result.base_points}, bonus {result.bonus_points})"
    )
    for message in result.messages:
        print(f"- {message}")


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    configure_logging(settings.log_level)

    if args.mode == "api":
        run_api()
        return

    if args.mode == "initdb":
        asyncio.run(init_db())
        return

    if not args.card_type or args.amount is None:
        parser.error("simulate needs --card-type and --amount")
    asyncio.run(simulate(args))


if __name__ == "__main__":
    main()
