# ipledger/cli/main.py
"""
CLI for inspecting and editing filesystem-backed IP address pools.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ipledger.core.address import IPAddress, parse_address
from ipledger.core.canon import canonical_json, canonical_json_str
from ipledger.core.encoding import owner_to_text
from ipledger.storage import (
    DiskStore,
    LastReservedNotFound,
    LockTimeout,
    PointerWriteError,
    resolve_data_dir,
)

app = typer.Typer(
    name="ipledger",
    help="Inspect and edit filesystem-backed IP address reservation pools",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

DataDirOption = typer.Option(None, "--data-dir", hidden=True)
LockTimeoutOption = typer.Option(10.0, "--lock-timeout", help="Seconds to wait for the pool lock")


def get_data_dir(ctx: typer.Context, flag: Optional[Path] = None) -> Path:
    """Resolve the pool root in this order:
    1. --data-dir on the command
    2. --data-dir before the command
    3. IPLEDGER_DATA_DIR environment variable
    4. Default: /var/lib/cni/networks
    """
    return resolve_data_dir(flag or (ctx.obj or {}).get("data_dir"))


def open_pool(data_dir: Path, pool: str, create: bool = False) -> DiskStore:
    if not create:
        if not data_dir.is_dir():
            console.print(f"[red]Data directory not found: {data_dir}[/]")
            console.print("[yellow]To get started:[/]")
            console.print("  • Reserve an address first (creates the pool)")
            console.print("  • Set env var: export IPLEDGER_DATA_DIR=/path/to/pools")
            console.print("  • Or use --data-dir: ipledger pools --data-dir /custom/path")
            raise typer.Exit(1)
        if not (data_dir / pool).is_dir():
            console.print(f"[red]Pool not found: {pool}[/]")
            raise typer.Exit(1)

    try:
        return DiskStore(pool, data_dir=data_dir)
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(2)
    except OSError as e:
        console.print(f"[red]Failed to open pool '{pool}': {escape(str(e))}[/]")
        raise typer.Exit(1)


def parse_address_arg(value: str) -> IPAddress:
    try:
        return parse_address(value)
    except ValueError:
        console.print(f"[red]Invalid IP address: {value}[/]")
        raise typer.Exit(2)


def describe_last(store: DiskStore) -> str:
    try:
        addr = store.last_reserved_address()
    except LastReservedNotFound:
        return "—"
    return str(addr) if addr is not None else "(unparseable)"


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir",
        help="Root directory holding one subdirectory per pool (overrides IPLEDGER_DATA_DIR)",
    ),
):
    """Manage IP address reservations shared between processes."""
    ctx.obj = {"data_dir": data_dir}


@app.command()
def pools(
    ctx: typer.Context,
    data_dir: Optional[Path] = DataDirOption,
    lock_timeout: float = LockTimeoutOption,
):
    """List all pools with reservation counts and last reserved address."""
    root = get_data_dir(ctx, data_dir)

    if not root.is_dir():
        console.print(f"[red]Data directory not found: {root}[/]")
        raise typer.Exit(1)

    names = sorted(p.name for p in root.iterdir() if p.is_dir())
    if not names:
        console.print("[yellow]No pools found.[/]")
        return

    table = Table(title="Address Pools")
    table.add_column("Pool")
    table.add_column("Reservations")
    table.add_column("Last Reserved")

    for name in names:
        store = open_pool(root, name)
        try:
            with store.locked(timeout=lock_timeout):
                count = len(store.list_reservations())
                last = describe_last(store)
        except LockTimeout as e:
            console.print(f"[red]{escape(str(e))}[/]")
            raise typer.Exit(1)
        table.add_row(name, str(count), last)

    console.print(table)


@app.command()
def show(
    ctx: typer.Context,
    pool: str = typer.Argument(..., help="Pool to display"),
    data_dir: Optional[Path] = DataDirOption,
    lock_timeout: float = LockTimeoutOption,
):
    """Show every reservation in a pool."""
    store = open_pool(get_data_dir(ctx, data_dir), pool)

    try:
        with store.locked(timeout=lock_timeout):
            reservations = store.list_reservations()
    except LockTimeout as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)

    if not reservations:
        console.print(f"[yellow]No reservations in pool '{pool}'[/]")
        return

    table = Table(title=f"Reservations in {pool}")
    table.add_column("Address")
    table.add_column("Owner")
    for r in reservations:
        table.add_row(str(r.address), escape(owner_to_text(r.owner)))

    console.print(table)


@app.command()
def reserve(
    ctx: typer.Context,
    pool: str = typer.Argument(..., help="Pool to reserve in (created if missing)"),
    address: str = typer.Argument(..., help="IP address to reserve"),
    owner: str = typer.Argument(..., help="Owner token, e.g. <container-id>:<ifname>"),
    data_dir: Optional[Path] = DataDirOption,
    lock_timeout: float = LockTimeoutOption,
):
    """Reserve an address for an owner."""
    addr = parse_address_arg(address)
    store = open_pool(get_data_dir(ctx, data_dir), pool, create=True)

    try:
        with store.locked(timeout=lock_timeout):
            reserved = store.reserve(owner, addr)
    except PointerWriteError as e:
        console.print(f"[green]Reserved {addr} for {escape(owner)}[/]")
        console.print(f"[yellow]Warning: {escape(str(e))}[/]")
        return
    except LockTimeout as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)

    if not reserved:
        console.print(f"[red]Address {addr} is already reserved in pool '{pool}'[/]")
        raise typer.Exit(1)

    console.print(f"[green]Reserved {addr} for {escape(owner)}[/]")


@app.command()
def release(
    ctx: typer.Context,
    pool: str = typer.Argument(..., help="Pool to release from"),
    address: str = typer.Argument(..., help="IP address to release"),
    data_dir: Optional[Path] = DataDirOption,
    lock_timeout: float = LockTimeoutOption,
):
    """Release a single address."""
    addr = parse_address_arg(address)
    store = open_pool(get_data_dir(ctx, data_dir), pool)

    try:
        with store.locked(timeout=lock_timeout):
            store.release(addr)
    except FileNotFoundError:
        console.print(f"[red]Address {addr} is not reserved in pool '{pool}'[/]")
        raise typer.Exit(1)
    except LockTimeout as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)

    console.print(f"[green]Released {addr}[/]")


@app.command("release-owner")
def release_owner(
    ctx: typer.Context,
    pool: str = typer.Argument(..., help="Pool to release from"),
    owner: str = typer.Argument(..., help="Owner token whose addresses are released"),
    data_dir: Optional[Path] = DataDirOption,
    lock_timeout: float = LockTimeoutOption,
):
    """Release every address held by an owner (best effort)."""
    store = open_pool(get_data_dir(ctx, data_dir), pool)

    try:
        with store.locked(timeout=lock_timeout):
            removed = store.release_by_owner(owner)
    except LockTimeout as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)

    if not removed:
        console.print(f"[yellow]No addresses held by {escape(owner)}[/]")
        return
    console.print(f"[green]Released {len(removed)} address(es) held by {escape(owner)}[/]")


@app.command()
def find(
    ctx: typer.Context,
    pool: str = typer.Argument(..., help="Pool to search"),
    owner: str = typer.Argument(..., help="Owner token to look up"),
    data_dir: Optional[Path] = DataDirOption,
    lock_timeout: float = LockTimeoutOption,
):
    """Print the address held by an owner."""
    store = open_pool(get_data_dir(ctx, data_dir), pool)

    try:
        with store.locked(timeout=lock_timeout):
            addr = store.find_by_owner(owner)
    except LockTimeout as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)

    if addr is None:
        console.print(f"[yellow]No address reserved for {escape(owner)}[/]")
        raise typer.Exit(1)
    typer.echo(str(addr))


@app.command()
def last(
    ctx: typer.Context,
    pool: str = typer.Argument(..., help="Pool to inspect"),
    data_dir: Optional[Path] = DataDirOption,
    lock_timeout: float = LockTimeoutOption,
):
    """Print the last reserved address of a pool."""
    store = open_pool(get_data_dir(ctx, data_dir), pool)

    try:
        with store.locked(timeout=lock_timeout):
            addr = store.last_reserved_address()
    except LastReservedNotFound as e:
        console.print(f"[yellow]{escape(str(e))}[/]")
        raise typer.Exit(1)
    except LockTimeout as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)

    if addr is None:
        console.print(f"[yellow]Last reserved address of pool '{pool}' is unparseable[/]")
        raise typer.Exit(1)
    typer.echo(str(addr))


@app.command()
def export(
    ctx: typer.Context,
    pool: str = typer.Argument(..., help="Pool to export"),
    data_dir: Optional[Path] = DataDirOption,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: stdout)"),
    lock_timeout: float = LockTimeoutOption,
):
    """Export a pool as canonical JSON (RFC 8785)."""
    store = open_pool(get_data_dir(ctx, data_dir), pool)

    try:
        with store.locked(timeout=lock_timeout):
            reservations = store.list_reservations()
            try:
                last_addr = store.last_reserved_address()
            except LastReservedNotFound:
                last_addr = None
    except LockTimeout as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)

    snapshot = {
        "pool": pool,
        "last_reserved_ip": str(last_addr) if last_addr is not None else None,
        "reservations": [r.to_dict() for r in reservations],
    }

    if output is None:
        typer.echo(canonical_json_str(snapshot))
        return

    output.write_bytes(canonical_json(snapshot) + b"\n")
    console.print(f"[green]Exported {len(reservations)} reservations to {output}[/]")


if __name__ == "__main__":
    app()
