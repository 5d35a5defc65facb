"""Command-line entry point for the wallet transaction core.

    python -m src.main balances
    python -m src.main history
    python -m src.main estimate --to 0x... --amount 0.1 --asset BNB
    python -m src.main send --to 0x... --amount 0.1 --asset USDT [--wait]
    python -m src.main send --to 0x... --amount 0.1 --cancel [--yes]

Pending state lives in memory, so a cancellation is only possible for a
transaction sent by the same process (``send --cancel``).

The private key is read from WALLET_PRIVATE_KEY (.env).
"""

import argparse
import asyncio
import signal
import sys

from loguru import logger

from config.settings import settings
from src.utils.logger import setup_logger
from src.wallet.events import EventLevel, WalletEvent
from src.wallet.exceptions import ValidationError, WalletError
from src.wallet.session import WalletSession
from src.wallet.submitter import CancellationQuote


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wallet", description="EVM wallet transaction core")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("balances", help="Show native and token balances")
    sub.add_parser("history", help="Show merged transaction history")

    for name, help_text in (("estimate", "Estimate the network fee"), ("send", "Send a transfer")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--to", required=True, help="Recipient address")
        cmd.add_argument("--amount", required=True, help="Decimal amount, e.g. 0.1")
        cmd.add_argument("--asset", default=settings.native_symbol, help="BNB, USDT or USDC")
        if name == "send":
            cmd.add_argument("--wait", action="store_true", help="Wait for confirmation")
            cmd.add_argument(
                "--cancel", action="store_true", help="Immediately cancel it (replace-by-fee)"
            )
            cmd.add_argument("--yes", action="store_true", help="Skip the cancel prompt")
    return parser


async def _print_event(event: WalletEvent) -> None:
    if event.level == EventLevel.PROGRESS:
        return
    suffix = f" ({event.tx_hash})" if event.tx_hash else ""
    print(f"[{event.level.value}] {event.message}{suffix}")


async def _wait_for(session: WalletSession, tx_hash: str) -> None:
    task = session.watch_task(tx_hash)
    if task is None:
        return
    outcome = await task
    print(f"{outcome.tx_hash}: {outcome.result.value}")


async def run(args: argparse.Namespace) -> int:
    session = WalletSession.from_settings(settings)
    session.bus.subscribe(_print_event)
    try:
        try:
            await session.unlock(settings.wallet_private_key, refresh=False)
        except ValidationError:
            print("WALLET_PRIVATE_KEY is missing or invalid", file=sys.stderr)
            return 2

        if args.command == "balances":
            await session.refresh()
            snapshot = session.balances
            if snapshot is None:
                return 1
            print(f"{settings.native_symbol}: {snapshot.native}")
            for symbol, value in snapshot.tokens.items():
                print(f"{symbol}: {value}")

        elif args.command == "history":
            await session.on_focus()
            for row in session.displayed_history():
                print(
                    f"{row.timestamp:%Y-%m-%d %H:%M:%S}  {row.status.value:<9}  "
                    f"{row.amount} {row.asset}  {row.sender} -> {row.recipient}  {row.tx_hash}"
                )

        elif args.command == "estimate":
            estimate = await session.request_fee_estimate(args.to, args.amount, args.asset)
            if estimate is None:
                return 1
            print(f"Fee: {estimate.fee} {settings.native_symbol} (gas {estimate.gas_limit})")

        elif args.command == "send":
            entry = await session.send(args.to, args.amount, args.asset)
            print(entry.tx_hash)
            watched = entry.tx_hash

            if args.cancel:

                async def confirm(quote: CancellationQuote) -> bool:
                    print(
                        f"Cancel nonce {quote.entry.nonce}: gas price {quote.gas_price} wei, "
                        f"max fee {quote.max_fee} {settings.native_symbol}"
                    )
                    if args.yes:
                        return True
                    answer = await asyncio.to_thread(input, "Proceed? [y/N] ")
                    return answer.strip().lower() in ("y", "yes")

                replacement = await session.cancel_transaction(entry.tx_hash, confirm)
                if replacement is not None:
                    watched = replacement.tx_hash

            if args.wait:
                await _wait_for(session, watched)

        return 0
    except WalletError as e:
        logger.debug(f"[WALLET] {args.command} failed: {e}")
        return 1
    finally:
        await session.close()


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger(json_logs=args.json_logs, level=settings.log_level)

    loop = asyncio.get_running_loop()
    command_task = asyncio.create_task(run(args))

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        command_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    try:
        return await command_task
    except asyncio.CancelledError:
        return 130


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
