"""Simple CLI for exercising a wallet session against a live signer and node"""

import argparse
import asyncio
from typing import Optional

from .config import settings
from .core.amounts import format_amount, from_wei
from .core.errors import WalletError
from .core.models import NotificationKind, PendingTransaction, TransactionStatus, WalletEvent
from .core.wallet import WalletSession
from .logging_config import setup_logging
from .providers.notifier import LoggingNotifier


ICONS = {
    NotificationKind.SUCCESS: "✅",
    NotificationKind.ERROR: "❌",
    NotificationKind.WARNING: "⚠️ ",
    NotificationKind.INFO: "ℹ️ ",
}


def print_notification(message: str, kind: NotificationKind) -> None:
    print(f"{ICONS[kind]} {message}")


def print_session(session: WalletSession) -> None:
    """Pretty print the connected account and its balances"""
    state = session.state
    print("\n👛 Wallet Session")
    print("=" * 50)
    print(f"Account:    {state.address}")
    print(f"Chain ID:   {state.chain_id}")
    print(f"Generation: {state.generation}")

    balance = session.balance
    if balance is None:
        print("Balances:   unavailable")
        return
    print(f"{settings.native_symbol + ':':<12}{format_amount(balance.native)}")
    print(f"{session.token.symbol + ':':<12}{format_amount(balance.token, 2)}")
    print(f"Block:      {balance.block_number}")


async def wait_for_finality(session: WalletSession, tx: PendingTransaction) -> PendingTransaction:
    done = asyncio.Event()
    outcome = {"tx": tx}

    def on_status(update: PendingTransaction) -> None:
        if update.hash == tx.hash and update.is_terminal:
            outcome["tx"] = update
            done.set()

    def on_session(state) -> None:
        # Tracking is dropped silently when the session changes
        if state.generation != tx.generation:
            print("🔌 Session changed; stopped tracking. Check the explorer link for the outcome.")
            done.set()

    session.on(WalletEvent.TRANSACTION_STATUS_CHANGED, on_status)
    session.on(WalletEvent.SESSION_CHANGED, on_session)
    try:
        await done.wait()
    finally:
        session.off(WalletEvent.TRANSACTION_STATUS_CHANGED, on_status)
        session.off(WalletEvent.SESSION_CHANGED, on_session)
    return outcome["tx"]


async def cli_status(session: WalletSession) -> None:
    await session.connect()
    print_session(session)


async def cli_estimate(session: WalletSession, amount: str, recipient: str) -> None:
    await session.connect()
    quote = await session.estimate_transfer(amount, recipient)
    print(f"\n⛽ Gas limit: {quote.gas_units}")
    print(f"   Gas price: {format_amount(quote.gas_price_gwei, 2)} gwei")
    print(f"   Est. cost: {format_amount(from_wei(quote.estimated_cost_wei), 6)} {settings.native_symbol}")


async def cli_send(session: WalletSession, amount: str, recipient: str, wait: bool = True) -> None:
    await session.connect()
    tx = await session.submit_transfer(amount, recipient)
    if tx.status == TransactionStatus.REJECTED:
        return
    print(f"🔗 {session.explorer_url(tx.hash)}")
    if not wait or tx.is_terminal:
        return

    print("⏳ Waiting for confirmation...")
    final = await wait_for_finality(session, tx)
    if final.receipt is not None:
        print(f"📦 Included in block {final.receipt.block_number}")
    print_session(session)


async def cli_switch_network(session: WalletSession) -> None:
    await session.connect()
    await session.switch_network()


async def cli_watch_token(session: WalletSession, image: Optional[str] = None) -> None:
    await session.connect()
    await session.watch_token(image=image)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="walletsync CLI")
    parser.add_argument("--token", help=f"Token registry key (default: {settings.default_token})")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Connect and show balances")

    estimate_parser = subparsers.add_parser("estimate", help="Estimate gas for a token transfer")
    estimate_parser.add_argument("amount", help="Amount in token units, e.g. 1.5")
    estimate_parser.add_argument("recipient", help="Recipient address")

    send_parser = subparsers.add_parser("send", help="Send a token transfer and track it")
    send_parser.add_argument("amount", help="Amount in token units, e.g. 1.5")
    send_parser.add_argument("recipient", help="Recipient address")
    send_parser.add_argument("--no-wait", action="store_true", help="Return once the transfer is submitted")

    subparsers.add_parser("switch-network", help=f"Switch the wallet to {settings.expected_chain_name}")

    watch_parser = subparsers.add_parser("watch-token", help="Add the token to the wallet's asset list")
    watch_parser.add_argument("--image", help="Token icon URL")

    return parser


async def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.log_level)
    session = WalletSession.from_settings(
        notifier=LoggingNotifier(forward=print_notification),
        token=args.token,
    )

    try:
        if args.command == "status":
            await cli_status(session)
        elif args.command == "estimate":
            await cli_estimate(session, args.amount, args.recipient)
        elif args.command == "send":
            await cli_send(session, args.amount, args.recipient, wait=not args.no_wait)
        elif args.command == "switch-network":
            await cli_switch_network(session)
        elif args.command == "watch-token":
            await cli_watch_token(session, args.image)
    except WalletError:
        # Already reported through the notifier
        return 1
    finally:
        await session.close()
    return 0


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
