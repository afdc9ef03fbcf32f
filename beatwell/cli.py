"""CLI commands for the BeatWell client."""

import argparse
import asyncio
import getpass
import logging
import sys

from beatwell.config import settings
from beatwell.services.auth.session_context import SessionContext
from beatwell.services.errors import BeatWellError
from beatwell.services.local_store import LocalStore
from beatwell.services.remote_gateway import RemoteGateway
from beatwell.services.sync_coordinator import SyncCoordinator


def build_coordinator() -> SyncCoordinator:
    """Wire a coordinator from settings: local store, backend client, persisted session."""
    store = LocalStore.open(settings.resolved_database_url)
    return SyncCoordinator(store, RemoteGateway(), SessionContext.load())


def init_db() -> None:
    """Create the local database and its tables."""
    try:
        LocalStore.open(settings.resolved_database_url)
    except BeatWellError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    print(f"Local database ready: {settings.resolved_database_url}")


def _prompt_password(confirm: bool = False) -> str:
    password = getpass.getpass("Password: ")
    if confirm and password != getpass.getpass("Confirm password: "):
        print("Error: Passwords do not match.")
        sys.exit(1)
    return password


async def register(coordinator: SyncCoordinator, args) -> None:
    password = args.password or _prompt_password(confirm=True)
    result = await coordinator.register(
        args.username,
        args.email,
        password,
        first_name=args.first_name,
        last_name=args.last_name,
    )
    print(f"{result.message}: logged in as {result.value.username}")


async def login(coordinator: SyncCoordinator, args) -> None:
    password = args.password or _prompt_password()
    result = await coordinator.login(args.username, password)
    print(f"{result.message}: logged in as {result.value.username}")


async def logout(coordinator: SyncCoordinator, args) -> None:
    result = await coordinator.logout()
    print(result.message)


async def whoami(coordinator: SyncCoordinator, args) -> None:
    handle = coordinator.current_session()
    if handle is None:
        print("Not logged in.")
        return
    name = f"{handle.first_name} {handle.last_name}".strip()
    print(f"{handle.username} (user {handle.user_id}){' - ' + name if name else ''}")
    if handle.expires_at:
        print(f"Session expires {handle.expires_at:%Y-%m-%d %H:%M:%S} UTC")


async def verify(coordinator: SyncCoordinator, args) -> None:
    result = await coordinator.verify_session()
    print(f"{result.message}: {result.value.username} <{result.value.email}>")


async def status(coordinator: SyncCoordinator, args) -> None:
    online = await coordinator.check_connectivity()
    print(f"Backend: {coordinator.gateway.base_url} ({'online' if online else 'unreachable'})")
    print(f"Session: {'active' if coordinator.current_session() else 'none'}")


async def water(coordinator: SyncCoordinator, args) -> None:
    if args.set is not None:
        result = await coordinator.save_water_intake(args.set)
        print(result.message)
    else:
        result = await coordinator.read_water_intake()
    suffix = " (offline)" if result.offline else ""
    print(f"Water today: {result.value.glasses}/{settings.daily_water_goal} glasses{suffix}")


async def today(coordinator: SyncCoordinator, args) -> None:
    result = await coordinator.read_today_meals()
    summary = result.value.summary
    suffix = " (offline)" if result.offline else ""
    print(f"Today: {summary.total_calories}/{settings.daily_calorie_goal} kcal in {summary.meals_count} meals{suffix}")
    for meal in result.value.meals:
        print(f"  {meal.meal_type.value:<9} {meal.meal_option_name} ({meal.calories} kcal)")


async def custom_food(coordinator: SyncCoordinator, args) -> None:
    result = await coordinator.save_custom_food(
        args.meal_type,
        args.name,
        args.calories,
        portion_size=args.portion,
        notes=args.notes,
    )
    print(f"{result.message}: {result.value.meal_option_name} ({result.value.calories} kcal)")


async def history(coordinator: SyncCoordinator, args) -> None:
    result = await coordinator.read_meal_history(limit=args.limit, offset=args.offset)
    if result.offline:
        print("(offline: showing meals stored on this device)")
    if not result.value.meals:
        print("No meals logged yet.")
    for meal in result.value.meals:
        when = f"{meal.logged_at:%Y-%m-%d %H:%M}" if meal.logged_at else "-"
        print(f"{when}  {meal.meal_type.value:<9} {meal.meal_option_name} ({meal.calories} kcal)")


COMMANDS = {
    "register": register,
    "login": login,
    "logout": logout,
    "whoami": whoami,
    "verify": verify,
    "status": status,
    "water": water,
    "today": today,
    "custom-food": custom_food,
    "history": history,
}


async def run_command(args) -> int:
    """Run one coordinator-backed command. Returns the process exit code."""
    try:
        coordinator = build_coordinator()
    except BeatWellError as e:
        print(f"Error: {e.message}")
        return 1

    try:
        await COMMANDS[args.command](coordinator, args)
        return 0
    except BeatWellError as e:
        print(f"Error: {e.message}")
        return 1
    finally:
        await coordinator.drain()
        await coordinator.gateway.aclose()


def main():
    parser = argparse.ArgumentParser(description="BeatWell client CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create the local database")

    register_parser = subparsers.add_parser("register", help="Create an account and log in")
    register_parser.add_argument("--username", required=True)
    register_parser.add_argument("--email", required=True)
    register_parser.add_argument("--password", help="Password (will prompt if not provided)")
    register_parser.add_argument("--first-name", default="")
    register_parser.add_argument("--last-name", default="")

    login_parser = subparsers.add_parser("login", help="Log in with username or email")
    login_parser.add_argument("--username", required=True, help="Username or email")
    login_parser.add_argument("--password", help="Password (will prompt if not provided)")

    subparsers.add_parser("logout", help="End the current session")
    subparsers.add_parser("whoami", help="Show the current session")
    subparsers.add_parser("verify", help="Verify the current session")
    subparsers.add_parser("status", help="Check backend reachability")

    water_parser = subparsers.add_parser("water", help="Show or record today's water intake")
    water_parser.add_argument("--set", type=int, metavar="GLASSES", help="Record this many glasses")

    subparsers.add_parser("today", help="Show today's meals against the calorie goal")

    custom_parser = subparsers.add_parser("custom-food", help="Log a custom food item")
    custom_parser.add_argument("--meal-type", required=True, choices=["breakfast", "lunch", "dinner"])
    custom_parser.add_argument("--name", required=True)
    custom_parser.add_argument("--calories", required=True, type=int)
    custom_parser.add_argument("--portion", type=float, default=1.0)
    custom_parser.add_argument("--notes", default="")

    history_parser = subparsers.add_parser("history", help="Show meal history")
    history_parser.add_argument("--limit", type=int, default=settings.meal_history_limit)
    history_parser.add_argument("--offset", type=int, default=0)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "init-db":
        init_db()
    elif args.command in COMMANDS:
        exit_code = asyncio.run(run_command(args))
        if exit_code:
            sys.exit(exit_code)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
