"""Command-line interface for the user record service."""

from __future__ import annotations
import argparse
import json
import logging
import sys
from getpass import getpass
from typing import Sequence

from usersvc.application import build_store
from usersvc.config import Settings, load_settings
from usersvc.errors import UserServiceError
from usersvc.models import User, parse_auth_type
from usersvc.passwords import generate_salt, hash_password
from usersvc.store import MAX_PAGE_SIZE, UserStore

logger = logging.getLogger("usersvc.main")

_MIN_PASSWORD_LENGTH = 12


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User record service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP user service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port for the HTTP API (default: 8080)")

    list_parser = subparsers.add_parser("list", help="Print stored users as JSON")
    list_parser.add_argument("--query", default=None, help="Filter expression, e.g. 'loginId eq alice'")
    list_parser.add_argument("--query-type", default=None, help="Query language (default: simple)")
    list_parser.add_argument("--position", type=int, default=0, help="Index of the first result")
    list_parser.add_argument("--size", type=int, default=None, help="Maximum number of results")

    subparsers.add_parser("count", help="Print the number of stored users")

    create_parser = subparsers.add_parser("create-user", help="Create a user with a hashed password")
    create_parser.add_argument("login_id", help="Login identifier for the user")
    create_parser.add_argument("contact_id", help="Identifier of the user's contact record")
    create_parser.add_argument("--auth-type", default=None, help="Authentication type (local, ldap, oauth)")

    delete_parser = subparsers.add_parser("delete-user", help="Delete a user by id")
    delete_parser.add_argument("user_id", help="Identifier of the user to delete")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "list", "count", "create-user", "delete-user"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _serve(settings: Settings, *, host: str, port: int) -> None:
    from usersvc.application import create_application
    import uvicorn

    logger.info("Starting user service on http://%s:%s", host, port)
    app = create_application(settings=settings)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _prompt_for_password() -> str:
    for _ in range(3):
        password = getpass("Password: ")
        confirm = getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < _MIN_PASSWORD_LENGTH:
            print(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def _list_users(store: UserStore, args: argparse.Namespace) -> None:
    size = args.size if args.size is not None else MAX_PAGE_SIZE
    users = store.list(args.query, args.query_type, position=args.position, size=size)
    print(json.dumps([user.to_dict() for user in users], indent=2))


def _create_user(store: UserStore, args: argparse.Namespace, password: str) -> User:
    salt = generate_salt()
    user = User(
        login_id=args.login_id.strip(),
        contact_id=args.contact_id.strip(),
        hashed_password=hash_password(password, salt),
        salt=salt,
        auth_type=parse_auth_type(args.auth_type),
    )
    return store.create(user, principal="cli")


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = _parse_args(argv)

    try:
        settings = load_settings()
    except (OSError, ValueError) as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        return 2

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port)
        return 0

    try:
        store = build_store(settings)
        if args.command == "list":
            _list_users(store, args)
        elif args.command == "count":
            print(store.count())
        elif args.command == "create-user":
            user = _create_user(store, args, _prompt_for_password())
            print(f"Created user {user.id}: {user.login_id} (contact {user.contact_id})")
        elif args.command == "delete-user":
            store.delete(args.user_id)
            print(f"Deleted user {args.user_id}")
    except UserServiceError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
