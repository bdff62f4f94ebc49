"""Time Capsule CLI for key management, local capsule operations, and the server."""

import asyncio
import base64
import sys
import time
from datetime import datetime
from pathlib import Path

import click
import httpx

from .config import Settings
from .hashing import hash_email, hash_password, sha256_hex
from .logging_config import setup_colored_logging


def _run_async(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _format_ts(timestamp: float | None) -> str:
    if not timestamp:
        return ""
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")


async def _with_db(settings: Settings, fn):
    """Open the database, run fn(db), and close it."""
    from .db import get_db, init_db

    await init_db(settings.db_path)
    db = await get_db(settings.db_path)
    try:
        return await fn(db)
    finally:
        await db.close()


async def _with_service(settings: Settings, fn):
    """Run fn(service) against a local database."""
    from .service import CapsuleService

    return await _with_db(settings, lambda db: fn(CapsuleService(db, settings)))


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option(
    "--db",
    "db_path",
    default=None,
    type=click.Path(),
    help="Database path (default: from TIMECAPSULE_DB_PATH or data/timecapsule.db)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, db_path, verbose):
    """Time Capsule - time-locked release of encrypted messages."""
    ctx.ensure_object(dict)
    settings = Settings()
    if db_path:
        settings.db_path = Path(db_path)
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose


@cli.command("init-db")
@click.pass_context
def init_db_cmd(ctx):
    """Initialize the database tables."""
    from .db import init_db

    settings = ctx.obj["settings"]
    _run_async(init_db(settings.db_path))
    click.echo(f"Database initialized at {settings.db_path}")


@cli.command("generate-key")
@click.option("--name", required=True, help="Sender identity for this key (e.g. 'alice')")
@click.option("--rate-limit", default=None, type=int, help="Requests per hour")
@click.pass_context
def generate_key_cmd(ctx, name, rate_limit):
    """Issue a new API key for a sender."""
    from .auth import check_sender_name, issue_key

    settings = ctx.obj["settings"]
    limit = rate_limit or settings.default_rate_limit
    try:
        check_sender_name(name)
    except ValueError as e:
        _fail(str(e))

    raw_key = _run_async(
        _with_db(settings, lambda db: issue_key(db, name=name, rate_limit=limit))
    )

    click.echo("")
    click.echo("API key generated. Save it now. It cannot be retrieved later.")
    click.echo("")
    click.echo(f"  Name:   {name}")
    click.echo(f"  Limit:  {limit}/hour")
    click.echo(f"  Key:    {raw_key}")
    click.echo("")


@cli.command("list-keys")
@click.pass_context
def list_keys_cmd(ctx):
    """List all API keys (lookup id only, never the full key)."""
    from .db import list_api_keys

    keys = _run_async(_with_db(ctx.obj["settings"], list_api_keys))

    if not keys:
        click.echo("No API keys found. Use 'timecapsule generate-key' to create one.")
        return

    click.echo(f"{'Name':<20} {'Lookup':<12} {'Active':<8} {'Rate':<8} {'Last Used'}")
    click.echo("-" * 72)

    for key in keys:
        click.echo(
            f"{key['name']:<20} "
            f"{key['key_lookup']:<12} "
            f"{'yes' if key['is_active'] else 'REVOKED':<8} "
            f"{key['rate_limit']:<8} "
            f"{_format_ts(key['last_used_at'])}"
        )


@cli.command("revoke-key")
@click.argument("lookup")
@click.pass_context
def revoke_key_cmd(ctx, lookup):
    """Revoke an API key by its lookup id (the 8 hex characters after tcap_)."""
    from .db import revoke_key

    success = _run_async(_with_db(ctx.obj["settings"], lambda db: revoke_key(db, lookup)))

    if success:
        click.echo(f"Key '{lookup}' has been revoked.")
    else:
        click.echo(f"No active key found with lookup id '{lookup}'.", err=True)


@cli.command("serve")
@click.option("--port", "-p", default=None, type=int, help="Port to run on")
@click.pass_context
def serve_cmd(ctx, port):
    """Start the capsule server."""
    import uvicorn

    from .app import create_app

    settings = ctx.obj["settings"]
    setup_colored_logging(ctx.obj["verbose"])

    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=port or settings.port, log_level="info")


@cli.command("create")
@click.option("--as", "sender", required=True, help="Sender identity to stamp on the capsule")
@click.option(
    "--message-file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File holding the already encrypted message",
)
@click.option("--unlock-at", type=int, default=None, help="Unlock time (unix seconds)")
@click.option("--unlock-in", type=int, default=None, help="Unlock after this many seconds")
@click.option("--recipient-email", required=True, help="Recipient email (hashed locally)")
@click.password_option("--password", help="Password (hashed locally)")
@click.option("--hint", default="", help="Password hint shown publicly")
@click.option("--title", default="", help="Message title shown publicly")
@click.option("--id", "capsule_id", default=None, help="Capsule address (default: allocated)")
@click.pass_context
def create_cmd(ctx, sender, message_file, unlock_at, unlock_in, recipient_email, password, hint, title, capsule_id):
    """Create a capsule in the local database."""
    from .capsule import CapsuleError

    if (unlock_at is None) == (unlock_in is None):
        _fail("Give exactly one of --unlock-at or --unlock-in")

    settings = ctx.obj["settings"]
    unlock_timestamp = unlock_at if unlock_at is not None else int(time.time()) + unlock_in

    async def run(service):
        return await service.create(
            sender=sender,
            encrypted_message=message_file.read_bytes(),
            unlock_timestamp=unlock_timestamp,
            recipient_email_hash=hash_email(recipient_email),
            password_hash=hash_password(password),
            password_hint=hint,
            message_title=title,
            capsule_id=capsule_id,
        )

    try:
        new_id, capsule = _run_async(_with_service(settings, run))
    except CapsuleError as e:
        _fail(f"{e.code}: {e}")

    click.echo(f"Created capsule {new_id}")
    click.echo(f"  Unlocks: {_format_ts(capsule.unlock_timestamp)}")


@cli.command("info")
@click.argument("capsule_id")
@click.pass_context
def info_cmd(ctx, capsule_id):
    """Show the public status of a capsule."""
    from .capsule import CapsuleError

    try:
        info = _run_async(_with_service(ctx.obj["settings"], lambda s: s.info(capsule_id)))
    except CapsuleError as e:
        _fail(f"{e.code}: {e}")

    click.echo(f"Capsule {capsule_id}")
    click.echo("=" * 40)
    click.echo(f"  Title:    {info.message_title}")
    click.echo(f"  Hint:     {info.password_hint}")
    click.echo(f"  Sender:   {info.sender}")
    click.echo(f"  Created:  {_format_ts(info.created_at)}")
    click.echo(f"  Unlocks:  {_format_ts(info.unlock_timestamp)}")
    click.echo(f"  Claimed:  {'yes' if info.is_claimed else 'no'}")


@cli.command("retrieve")
@click.argument("capsule_id")
@click.option("--password", prompt=True, hide_input=True, help="Password (hashed locally)")
@click.option(
    "--out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the ciphertext here instead of printing it as base64",
)
@click.pass_context
def retrieve_cmd(ctx, capsule_id, password, out):
    """Retrieve a capsule's ciphertext from the local database."""
    from .capsule import CapsuleError

    password_hash = hash_password(password)
    try:
        payload = _run_async(
            _with_service(ctx.obj["settings"], lambda s: s.retrieve(capsule_id, password_hash))
        )
    except CapsuleError as e:
        _fail(f"{e.code}: {e}")

    if out:
        out.write_bytes(payload)
        click.echo(f"Wrote {len(payload)} bytes to {out}")
    else:
        click.echo(base64.b64encode(payload).decode("ascii"))


@cli.command("events")
@click.argument("capsule_id")
@click.pass_context
def events_cmd(ctx, capsule_id):
    """Show the lifecycle events of a capsule."""
    from .capsule import CapsuleError

    try:
        events = _run_async(_with_service(ctx.obj["settings"], lambda s: s.events(capsule_id)))
    except CapsuleError as e:
        _fail(f"{e.code}: {e}")

    for event in events:
        actor = f" by {event.actor}" if event.actor else ""
        click.echo(f"{_format_ts(event.timestamp)}  {event.kind}{actor}")


@cli.command("hash")
@click.argument("value")
@click.option("--email", is_flag=True, help="Normalise as an email address first")
def hash_cmd(value, email):
    """Print the 64-character commitment for a password or email."""
    click.echo(hash_email(value) if email else sha256_hex(value))


@cli.command("status")
@click.option("--url", default=None, help="Server URL (default: from settings)")
@click.pass_context
def status_cmd(ctx, url):
    """Check whether a capsule server is responding."""
    from .client import CapsuleClient

    settings = ctx.obj["settings"]
    base_url = url or f"http://{settings.host}:{settings.port}"

    try:
        health = _run_async(CapsuleClient(base_url, timeout=2.0).health())
    except httpx.HTTPError:
        click.echo(f"  Server: {base_url} (not responding)")
        sys.exit(1)

    click.echo(f"  Server: {base_url} ({health.get('status', 'unknown')})")


if __name__ == "__main__":
    cli()
