"""Command-line interface for gql-autoclient."""

import asyncio
import json
import logging
import shutil
import tarfile
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path

import click

from .core.client import DEFAULT_HTTP_BASE_URL, ClientConfig, GraphQLClient
from .core.errors import AutoClientError
from .core.events import EventKind
from .core.ir import IRSchema
from .core.parser import load_schema
from .core.query_builder import FieldExclusion, OperationKind
from .core.registry import OperationRegistry

ARCHIVE_SUFFIXES = (".zip", ".tar.gz", ".tgz")


def extract_archive(archive_path: Path) -> str:
    """Extract archive to temp directory. Returns path to extracted content."""
    temp_dir = tempfile.mkdtemp()
    if archive_path.suffix == ".zip":
        with zipfile.ZipFile(archive_path, "r") as zip_ref:
            zip_ref.extractall(temp_dir)
    elif archive_path.name.endswith((".tar.gz", ".tgz")):
        with tarfile.open(archive_path, "r:gz") as tar_ref:
            tar_ref.extractall(temp_dir)
    else:
        shutil.rmtree(temp_dir)
        raise ValueError(f"Unsupported archive format: {archive_path.suffix}")
    return temp_dir


@contextmanager
def open_schema(schema: str):
    """Load a schema from a file, directory, or archive."""
    schema_path = Path(schema).resolve()
    temp_dir = None
    try:
        actual_schema_path = schema_path
        if schema_path.is_file() and schema_path.name.lower().endswith(ARCHIVE_SUFFIXES):
            temp_dir = extract_archive(schema_path)
            actual_schema_path = Path(temp_dir)
        yield load_schema(str(actual_schema_path))
    finally:
        # Clean up temp directory
        if temp_dir:
            shutil.rmtree(temp_dir)


def parse_args(pairs: tuple[str, ...]) -> dict:
    """Turn ``name=value`` pairs into arguments; values are JSON when they parse as JSON."""
    args = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected name=value, got '{pair}'", param_hint="--arg")
        try:
            args[name] = json.loads(raw)
        except ValueError:
            args[name] = raw
    return args


def build_client(ir: IRSchema, data_source: str, http_base_url: str, socket_url: str | None, ignore) -> GraphQLClient:
    options = {"data_source": data_source, "http_base_url": http_base_url}
    if socket_url:
        options["socket_base_url"] = socket_url
    return GraphQLClient(ir, ClientConfig(**options), exclude=FieldExclusion(ignore))


schema_option = click.option(
    "--schema",
    "-s",
    required=True,
    type=click.Path(exists=True),
    help="Path to GraphQL SDL file, directory, introspection .json, or archive (.zip, .tar.gz, .tgz).",
)
ignore_option = click.option(
    "--ignore",
    "-i",
    multiple=True,
    help="Field to leave out of selections, as Type.field (wildcards allowed).",
)
arg_option = click.option(
    "--arg",
    "-a",
    "arg_pairs",
    multiple=True,
    help="Operation argument as name=value; JSON values are decoded.",
)
endpoint_options = [
    click.option("--data-source", "-d", required=True, help="Data source name appended to the base URL."),
    click.option("--http-base-url", default=DEFAULT_HTTP_BASE_URL, show_default=True, help="HTTP base URL."),
    click.option("--socket-url", default=None, help="Channel socket base URL (default derived from data source)."),
]


def with_endpoint_options(func):
    for option in reversed(endpoint_options):
        func = option(func)
    return func


@click.group()
@click.version_option(package_name="gql-autoclient")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """Schema-driven GraphQL client.

    Every query, mutation and subscription of a schema is callable without
    hand-written bindings.
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")


@main.command()
@schema_option
@click.option(
    "--kind",
    "-k",
    type=click.Choice([kind.value for kind in OperationKind]),
    default=None,
    help="Only list operations of this kind.",
)
def operations(schema: str, kind: str | None):
    """List the operations a schema exposes, with their arguments.

    Examples:

        gql-autoclient operations --schema ./schema.graphql

        gql-autoclient operations -s ./schema.json --kind subscription
    """
    with open_schema(schema) as ir:
        registry = _registry(ir)
    kinds = [OperationKind(kind)] if kind else list(OperationKind)
    for op_kind in kinds:
        for name in registry.list_by_kind(op_kind):
            descriptor = registry.get(name, op_kind)
            args = ", ".join(f"{arg}: {sig}" for arg, sig in descriptor.args_shape.items())
            signature = f"{name}({args})" if args else name
            click.echo(f"{op_kind.value:<13} {signature}: {descriptor.return_type}")


@main.command()
@schema_option
@ignore_option
@arg_option
@click.option("--max-depth", type=int, default=None, help="Maximum selection nesting.")
@click.argument("operation")
def render(schema: str, ignore: tuple[str, ...], arg_pairs: tuple[str, ...], max_depth: int | None, operation: str):
    """Print the rendered operation string.

    Examples:

        gql-autoclient render -s ./schema.graphql getUser -a id=42 -i User.password
    """
    with open_schema(schema) as ir:
        registry = _registry(ir, FieldExclusion(ignore), max_depth=max_depth)
    descriptor = registry.get(operation)
    if descriptor is None:
        raise click.ClickException(f"Unknown operation: {operation}")
    try:
        click.echo(descriptor.build(parse_args(arg_pairs)))
    except AutoClientError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@schema_option
@with_endpoint_options
@ignore_option
@arg_option
@click.argument("operation")
def call(
    schema: str,
    data_source: str,
    http_base_url: str,
    socket_url: str | None,
    ignore: tuple[str, ...],
    arg_pairs: tuple[str, ...],
    operation: str,
):
    """Execute a query or mutation and print the JSON result.

    Examples:

        gql-autoclient call -s ./schema.graphql -d eth getBlockByHeight -a height=1000
    """
    args = parse_args(arg_pairs)

    async def run():
        with open_schema(schema) as ir:
            client = build_client(ir, data_source, http_base_url, socket_url, ignore)
        async with client:
            bound = client.operation(operation)
            if bound.kind is OperationKind.SUBSCRIPTION:
                raise click.ClickException(f"{operation} is a subscription; use the subscribe command")
            return await bound(args)

    try:
        result = asyncio.run(run())
    except (AutoClientError, KeyError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(result, indent=2, default=str))


@main.command()
@schema_option
@with_endpoint_options
@ignore_option
@arg_option
@click.option("--count", "-n", type=int, default=None, help="Stop after this many data events.")
@click.argument("operation")
def subscribe(
    schema: str,
    data_source: str,
    http_base_url: str,
    socket_url: str | None,
    ignore: tuple[str, ...],
    arg_pairs: tuple[str, ...],
    count: int | None,
    operation: str,
):
    """Subscribe and print each event as JSON until interrupted.

    Examples:

        gql-autoclient subscribe -s ./schema.graphql -d eth newBlockMined -n 3
    """
    args = parse_args(arg_pairs)

    async def run():
        with open_schema(schema) as ir:
            client = build_client(ir, data_source, http_base_url, socket_url, ignore)
        async with client:
            stream = await client.subscribe(operation, args)
            received = 0
            async for event in stream:
                if event.kind is EventKind.DATA:
                    click.echo(json.dumps(event.payload, default=str))
                    received += 1
                    if count is not None and received >= count:
                        break
                elif event.kind is EventKind.ERROR:
                    click.echo(f"error: {event.payload}", err=True)

    try:
        asyncio.run(run())
    except (AutoClientError, KeyError) as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        pass


def _registry(ir: IRSchema, exclude=None, max_depth: int | None = None) -> OperationRegistry:
    try:
        return OperationRegistry.from_schema(ir, exclude, max_depth=max_depth)
    except AutoClientError as exc:
        raise click.ClickException(str(exc)) from exc


if __name__ == "__main__":
    main()
