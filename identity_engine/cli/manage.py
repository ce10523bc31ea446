"""Click-based operations CLI for the contact identity service.

Provides three commands:

* ``serve`` -- runs the FastAPI application under uvicorn.
* ``ensure-indexes`` -- creates the contact collection indexes, including the
  unique primary-fingerprint constraint the linker depends on.
* ``show-cluster`` -- prints the merged view of the cluster containing a
  contact id, without writing anything.
"""

from __future__ import annotations

import asyncio
import json

import click
import uvicorn

from identity_engine.common.config import get_config
from identity_engine.common.errors import IdentityEngineError
from identity_engine.common.logging_config import setup_logging
from identity_engine.linking.identity_linker import read_cluster
from identity_engine.storage.models.contact import ContactView
from identity_engine.storage.mongodb_contact_store import MongoContactStore

# --------------------------------------------------------------------------- #
# CLI group                                                                    #
# --------------------------------------------------------------------------- #


@click.group()
def cli() -> None:
    """Contact identity service -- run the API and manage the contact store."""


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (defaults to HOST or 0.0.0.0).")
@click.option("--port", type=int, default=None, help="Bind port (defaults to PORT or 4000).")
@click.option("--reload", is_flag=True, default=False, help="Restart on code changes.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the identify API."""
    config = get_config()
    uvicorn.run(
        "identity_engine.serving.identify_api:create_app",
        factory=True,
        host=host or config.host,
        port=port or config.port,
        reload=reload,
        log_config=None,
    )


@cli.command("ensure-indexes")
def ensure_indexes() -> None:
    """Create the contact collection indexes."""
    config = get_config()
    setup_logging(config.service_name, config.log_level)

    async def _run() -> None:
        store = MongoContactStore.from_config(config)
        try:
            await store.ensure_indexes()
        finally:
            store.close()

    try:
        asyncio.run(_run())
    except IdentityEngineError as exc:
        click.secho(f"Index creation failed: {exc.message}", fg="red", bold=True)
        raise SystemExit(1) from exc
    click.secho(
        f"Indexes ensured on {config.db_name}.{config.collection_name}", fg="green", bold=True
    )


@cli.command("show-cluster")
@click.argument("contact_id")
def show_cluster(contact_id: str) -> None:
    """Print the merged view of the cluster containing CONTACT_ID."""
    config = get_config()

    async def _run() -> ContactView:
        store = MongoContactStore.from_config(config)
        try:
            return await read_cluster(store, contact_id)
        finally:
            store.close()

    try:
        view = asyncio.run(_run())
    except IdentityEngineError as exc:
        click.secho(exc.message, fg="red", bold=True)
        raise SystemExit(1) from exc
    click.echo(json.dumps({"contact": view.model_dump(by_alias=True)}, indent=2))


if __name__ == "__main__":
    cli()
