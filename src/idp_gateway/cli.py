"""Administrative commands.

Usage:
    idp-gateway-admin register-client --name "My SPA" \\
        --redirect-uri https://app.example.com/callback --public

Clients are written to the PostgreSQL directory configured by
``DATABASE_URL``; the in-memory backend does not outlive the process, so
registering against it is refused.
"""

import argparse
import asyncio
import sys

from beartype import beartype

from .core.config import Settings, get_settings
from .core.database import Database, DatabaseConfig
from .core.logging_utils import configure_logging, get_logger
from .core.security import generate_identifier, generate_token_value, hash_secret
from .models.client import ClientType, GrantType, OAuthClient
from .storage.postgres import PostgresClientDirectory
from .storage.protocols import ClientDirectory, StorageError

logger = get_logger(__name__)


@beartype
def build_client(
    name: str,
    redirect_uris: list[str],
    *,
    public: bool = False,
    scopes: list[str] | None = None,
    client_id: str | None = None,
) -> tuple[OAuthClient, str | None]:
    """Create a client record and, for confidential clients, its secret.

    The plaintext secret is returned once and never stored.
    """
    secret = None if public else generate_token_value()
    client = OAuthClient(
        client_id=client_id or generate_identifier(24),
        client_name=name,
        client_type=ClientType.PUBLIC if public else ClientType.CONFIDENTIAL,
        client_secret_hash=hash_secret(secret) if secret else None,
        redirect_uris=tuple(redirect_uris),
        grant_types=(GrantType.AUTHORIZATION_CODE, GrantType.REFRESH_TOKEN),
        scopes=tuple(scopes) if scopes else ("openid", "email", "profile"),
    )
    return client, secret


@beartype
async def register_client(
    directory: ClientDirectory, client: OAuthClient
) -> OAuthClient:
    """Persist ``client`` unless its id is already taken."""
    existing = await directory.get_client(client.client_id)
    if existing is not None:
        raise ValueError(f"Client {client.client_id} already exists")
    created = await directory.create_client(client)
    logger.info("Registered %s client %s", created.client_type.value, created.client_id)
    return created


async def _register(args: argparse.Namespace, settings: Settings) -> int:
    if settings.storage_backend != "postgres":
        print("ERROR: STORAGE_BACKEND must be postgres to register clients")
        return 1

    client, secret = build_client(
        args.name,
        args.redirect_uri,
        public=args.public,
        scopes=args.scope,
        client_id=args.client_id,
    )

    db = Database(DatabaseConfig.from_settings(settings))
    await db.connect()
    try:
        created = await register_client(PostgresClientDirectory(db), client)
    except (ValueError, StorageError) as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        await db.disconnect()

    print(f"client_id:     {created.client_id}")
    print(f"client_type:   {created.client_type.value}")
    if secret is not None:
        print(f"client_secret: {secret}")
        print("Store the secret now; it cannot be shown again.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="idp-gateway-admin", description="IdP Gateway administration"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    register = commands.add_parser("register-client", help="Register an OAuth2 client")
    register.add_argument("--name", required=True, help="Display name of the client")
    register.add_argument(
        "--redirect-uri",
        action="append",
        required=True,
        help="Exact redirect URI (repeatable)",
    )
    register.add_argument(
        "--public", action="store_true", help="Register a public (PKCE) client"
    )
    register.add_argument("--scope", action="append", help="Allowed scope (repeatable)")
    register.add_argument("--client-id", help="Explicit client id instead of a random one")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Run the administration command line."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(level=settings.log_level_number)

    if args.command == "register-client":
        sys.exit(asyncio.run(_register(args, settings)))


if __name__ == "__main__":
    main()
