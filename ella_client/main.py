"""
Main entry point for the ELLA API client.

This module provides the ``ella-client`` command line interface: logging in
and out, inspecting the stored session and sending authenticated requests to
the ELLA REST API.
"""

import sys
import json
import asyncio
import getpass
import argparse
import logging
from typing import Optional, List, Any

from ella_shared.exceptions import (
    AuthError, ConfigurationError, EllaClientError, NetworkError, RequestError, ServerError,
    create_error_response, handle_exception
)
from ella_shared.logging_config import AuditLogger, LogLevel, LogFormat, setup_logging

from ella_client.api_client import EllaAPIClient
from ella_client.auth.token_manager import SessionManager
from ella_client.config import ClientConfiguration

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_AUTH = 2
EXIT_NETWORK = 3
EXIT_REQUEST = 4
EXIT_INTERRUPTED = 130


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="ella-client",
        description="Command line client for the ELLA API",
        epilog="""
Examples:
  %(prog)s login --email me@example.com     # Log in (prompts for the password)
  %(prog)s whoami                           # Show the logged-in user
  %(prog)s status --json                    # Show the stored session as JSON
  %(prog)s request GET /goals               # Send an authenticated request
  %(prog)s request POST /goals --data '{"name": "Trip"}'

Exit codes:
  0 success, 1 configuration or unexpected error, 2 authentication failed,
  3 server unreachable or timed out, 4 server or request error, 130 interrupted
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Configuration options
    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--api-url", type=str, metavar="URL",
                              help="Override API base URL")
    config_group.add_argument("--storage", type=str, metavar="BACKEND",
                              choices=["auto", "keyring", "file", "memory"],
                              help="Credential storage backend")

    # Output format options
    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output results in JSON format")

    # Debug options
    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Also log to this file")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    login_parser = subparsers.add_parser("login", help="Log in and store the session")
    login_parser.add_argument("--email", required=True, help="Account email")
    login_parser.add_argument("--password", help="Account password (prompted when omitted)")

    subparsers.add_parser("logout", help="Log out and clear the stored session")
    subparsers.add_parser("whoami", help="Show the logged-in user")
    subparsers.add_parser("status", help="Show the stored session without contacting the server")

    request_parser = subparsers.add_parser("request", help="Send an authenticated request")
    request_parser.add_argument("method", type=str.upper,
                                choices=["GET", "POST", "PUT", "PATCH", "DELETE"],
                                help="HTTP method")
    request_parser.add_argument("path", help="Path relative to the API base URL")
    request_parser.add_argument("--data", type=str, metavar="JSON",
                                help="JSON request body")
    request_parser.add_argument("--raw", action="store_true",
                                help="Do not unwrap the response data envelope")

    return parser.parse_args(argv)


def build_configuration(args) -> ClientConfiguration:
    """Load configuration and apply command line overrides."""
    config = ClientConfiguration(args.config)

    if args.api_url:
        config.set_override('server.base_url', args.api_url)
    if args.storage:
        config.set_override('auth.storage_backend', args.storage)
    if args.debug:
        config.set_override('logging.level', 'DEBUG')
    if args.log_file:
        config.set_override('logging.file', args.log_file)

    return config


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging from configuration and command line arguments."""
    try:
        log_level = LogLevel(config.get_log_level())
    except ValueError:
        log_level = LogLevel.INFO

    # Keep machine-readable output clean
    if args.json and not args.debug:
        log_level = LogLevel.ERROR

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD

    setup_logging(
        log_level=log_level,
        log_format=log_format,
        log_file=config.get_log_file(),
        max_file_size=config.get_config('logging.max_size', 10485760),
        backup_count=config.get_config('logging.backup_count', 3)
    )


def exit_code_for(error: EllaClientError) -> int:
    """Map an error onto the command's exit code."""
    if isinstance(error, AuthError):
        return EXIT_AUTH
    if isinstance(error, NetworkError):
        return EXIT_NETWORK
    if isinstance(error, (RequestError, ServerError)):
        return EXIT_REQUEST
    return EXIT_ERROR


def report_error(args, error: EllaClientError) -> int:
    """Print a failed command's error, record it in the audit log and pick the exit code."""
    AuditLogger().log_error(error)
    if args is not None and args.json:
        print(json.dumps(create_error_response(error), default=str))
    else:
        print(f"Error: {error.user_message}", file=sys.stderr)
    return exit_code_for(error)


def print_result(args, result: Any) -> None:
    if args.json or not isinstance(result, str):
        print(json.dumps(result, indent=None if args.json else 2, default=str))
    else:
        print(result)


async def handle_login(args, client: EllaAPIClient, session: SessionManager) -> int:
    password = args.password or getpass.getpass("Password: ")
    result = await session.login(args.email, password)

    if args.json:
        print_result(args, {'authenticated': True, 'expires_in': result.get('expiresIn')})
    else:
        print(f"Logged in as {args.email}")
    return EXIT_OK


async def handle_logout(args, client: EllaAPIClient, session: SessionManager) -> int:
    await session.logout()
    if args.json:
        print_result(args, {'authenticated': False})
    else:
        print("Logged out")
    return EXIT_OK


async def handle_whoami(args, client: EllaAPIClient, session: SessionManager) -> int:
    user = await session.fetch_current_user()
    if user is None:
        if args.json:
            print_result(args, None)
        else:
            print("Not logged in", file=sys.stderr)
        return EXIT_AUTH

    print_result(args, user)
    return EXIT_OK


async def handle_status(args, client: EllaAPIClient, session: SessionManager) -> int:
    expires_at = session.get_token_expiration()
    status = {
        'api_url': getattr(client.transport, 'base_url', None),
        'has_access_token': client.credential_store.get_access_token() is not None,
        'has_refresh_token': client.credential_store.get_refresh_token() is not None,
        'authenticated': session.is_authenticated(),
        'user_id': session.get_user_id(),
        'expires_at': expires_at.isoformat() if expires_at else None,
    }

    if args.json:
        print_result(args, status)
    else:
        print(f"Server: {status['api_url']}")
        print(f"Authenticated: {'Yes' if status['authenticated'] else 'No'}")
        if status['user_id']:
            print(f"User: {status['user_id']}")
        if status['expires_at']:
            print(f"Access token expires: {status['expires_at']}")
        print(f"Refresh token stored: {'Yes' if status['has_refresh_token'] else 'No'}")
    return EXIT_OK


async def handle_request(args, client: EllaAPIClient, session: SessionManager) -> int:
    body = None
    if args.data:
        try:
            body = json.loads(args.data)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"--data is not valid JSON: {e}", cause=e) from e

    result = await client.request(args.method, args.path, json=body, unwrap=not args.raw)
    if result is not None:
        print_result(args, result)
    return EXIT_OK


COMMAND_HANDLERS = {
    'login': handle_login,
    'logout': handle_logout,
    'whoami': handle_whoami,
    'status': handle_status,
    'request': handle_request,
}


async def run_command(args, config: ClientConfiguration) -> int:
    """Run one command against a client built from configuration."""
    async with EllaAPIClient.from_config(config) as client:
        session = SessionManager(client)
        try:
            return await COMMAND_HANDLERS[args.command](args, client, session)
        finally:
            session.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the client."""
    args = None
    try:
        args = parse_arguments(argv)
        config = build_configuration(args)
        configure_logging(args, config)

        return asyncio.run(run_command(args, config))

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except EllaClientError as e:
        logger.debug(f"Command failed: {e.message}")
        return report_error(args, e)
    except Exception as e:
        logger.exception("Fatal error in main")
        error = handle_exception(e, context={'command': getattr(args, 'command', None)})
        return report_error(args, error)


if __name__ == "__main__":
    sys.exit(main())
