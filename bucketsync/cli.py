"""CLI interface for bucketsync."""

import json
import logging
from collections.abc import Iterable
from dataclasses import replace
from typing import Any, Callable, Optional

import click

from . import __version__
from .api import create_client
from .config import SyncOptions
from .exceptions import BucketSyncError, ConfigurationError, SyncRunError
from .output import OutputFormatter
from .sync import SyncAction, SyncEngine, SyncSpec, TaskPlanner, load_sync_config
from .sync.outcome import TaskOutcome

logger = logging.getLogger(__name__)


def _parse_key_values(values: Iterable[str], option: str) -> dict[str, Any]:
    """Parse repeated KEY=VALUE options.

    Values starting with '{' are decoded as JSON (for ``Metadata``).
    """
    result: dict[str, Any] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint=option)
        if value.startswith("{"):
            try:
                result[key] = json.loads(value)
            except json.JSONDecodeError as e:
                raise click.BadParameter(f"invalid JSON for {key}: {e}", param_hint=option)
        else:
            result[key] = value
    return result


def connection_options(f: Callable) -> Callable:
    """Options shared by every command that talks to a bucket."""
    options = [
        click.option(
            "--bucket", "-b", envvar="BUCKETSYNC_BUCKET", help="Bucket name"
        ),
        click.option("--region", envvar="AWS_REGION", help="AWS region"),
        click.option(
            "--access-key-id", envvar="AWS_ACCESS_KEY_ID", help="AWS access key ID"
        ),
        click.option(
            "--secret-access-key",
            envvar="AWS_SECRET_ACCESS_KEY",
            help="AWS secret access key",
        ),
        click.option("--endpoint-url", help="Endpoint of an S3-compatible service"),
        click.option(
            "--dry-run",
            is_flag=True,
            help="List and compare, but do not change anything",
        ),
        click.option(
            "--mock",
            "mock_root",
            type=click.Path(file_okay=False),
            help="Use a local directory as the bucket store",
        ),
        click.option(
            "--differential",
            is_flag=True,
            help="Only transfer files that changed",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def exclude_options(f: Callable) -> Callable:
    """Options of the commands that act on a listed prefix."""
    f = click.option(
        "--flip-exclude",
        is_flag=True,
        help="Only act on keys matching --exclude",
    )(f)
    return click.option(
        "--exclude",
        "-x",
        multiple=True,
        help="Glob pattern of keys to leave alone (repeatable)",
    )(f)


def _build_options(
    bucket: Optional[str],
    region: Optional[str],
    access_key_id: Optional[str],
    secret_access_key: Optional[str],
    endpoint_url: Optional[str],
    dry_run: bool,
    mock_root: Optional[str],
    **extra: Any,
) -> SyncOptions:
    return SyncOptions(
        bucket=bucket or "",
        region=region,
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        endpoint_url=endpoint_url,
        debug=dry_run,
        mock=mock_root is not None,
        mock_root=mock_root,
        **extra,
    )


def _report(out: OutputFormatter, outcomes: list[TaskOutcome], error: Optional[str]) -> None:
    if out.json_output:
        document: dict[str, Any] = {
            "success": error is None,
            "tasks": [o.to_dict() for o in outcomes],
        }
        if error is not None:
            document["error"] = error
        out.output_json(document)
    elif error is not None:
        out.error(error)


def execute_sync(ctx: Any, options: SyncOptions, specs: list[SyncSpec]) -> None:
    """Validate, plan and run specs, exiting with status 1 on failure."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        options.validate()
        tasks = TaskPlanner(options).plan(specs)
    except ConfigurationError as e:
        out.error(f"Configuration error: {e}")
        ctx.exit(1)
        return

    if not tasks:
        out.warning("Nothing to do")
        _report(out, [], None)
        return

    try:
        client = create_client(options)
        engine = SyncEngine(client, options, out)
        outcomes = engine.run(tasks)
    except SyncRunError as e:
        _report(out, e.outcomes, str(e))
        ctx.exit(1)
        return
    except BucketSyncError as e:
        _report(out, [], str(e))
        ctx.exit(1)
        return

    _report(out, outcomes, None)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """bucketsync - Upload, download and delete files in an S3 bucket."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("bucketsync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--dry-run", is_flag=True, help="Force the debug (dry run) option")
@click.option(
    "--mock",
    "mock_root",
    type=click.Path(file_okay=False),
    help="Use a local directory as the bucket store",
)
@click.pass_context
def run(ctx: Any, config_file: str, dry_run: bool, mock_root: Optional[str]) -> None:
    """Run every task of a JSON configuration file.

    The file holds global "options" and an ordered list of "files" entries,
    each with an "action" (upload, download or delete), "src", "dest",
    "cwd", "exclude", "flipExclude", "differential" and "params".

    Examples:
        bucketsync run deploy.json
        bucketsync run deploy.json --dry-run
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        options, specs = load_sync_config(config_file)
    except ConfigurationError as e:
        out.error(f"Configuration error: {e}")
        ctx.exit(1)
        return

    if dry_run:
        options = replace(options, debug=True)
    if mock_root is not None:
        options = replace(options, mock=True, mock_root=mock_root)

    execute_sync(ctx, options, specs)


@main.command()
@click.argument("sources", nargs=-1, required=True)
@click.option(
    "--dest",
    "-d",
    required=True,
    help="Destination key, or prefix when ending with '/'",
)
@click.option("--cwd", "-C", help="Directory the sources are relative to")
@click.option(
    "--param",
    "-p",
    "params",
    multiple=True,
    help="PutObject parameter as KEY=VALUE (repeatable)",
)
@click.option(
    "--mime",
    multiple=True,
    help="Content type for a file as PATH=TYPE (repeatable)",
)
@click.option("--acl", default="public-read", show_default=True, help="Canned ACL")
@click.option(
    "--concurrency",
    "-j",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Number of parallel uploads",
)
@connection_options
@click.pass_context
def upload(
    ctx: Any,
    sources: tuple[str, ...],
    dest: str,
    cwd: Optional[str],
    params: tuple[str, ...],
    mime: tuple[str, ...],
    acl: str,
    concurrency: int,
    differential: bool,
    **connection: Any,
) -> None:
    """Upload files to the bucket.

    SOURCES are file paths or glob patterns, relative to --cwd.

    Examples:
        bucketsync upload -b my-bucket -C build "**/*" -d site/
        bucketsync upload -b my-bucket report.pdf -d reports/latest.pdf
        bucketsync upload -b my-bucket -C build "**/*" -d site/ --differential
    """
    options = _build_options(
        **connection,
        concurrency=concurrency,
        access=acl,
        mime=_parse_key_values(mime, "--mime"),
    )
    spec = SyncSpec(
        action=SyncAction.UPLOAD,
        source_paths=sources,
        dest=dest,
        cwd=cwd,
        differential=differential,
        params=_parse_key_values(params, "--param"),
    )
    execute_sync(ctx, options, [spec])


@main.command()
@click.option("--dest", "-d", required=True, help="Prefix to download")
@click.option(
    "--cwd",
    "-C",
    required=True,
    type=click.Path(file_okay=False),
    help="Directory to download into",
)
@click.option(
    "--concurrency",
    "-j",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Number of parallel downloads",
)
@connection_options
@exclude_options
@click.pass_context
def download(
    ctx: Any,
    dest: str,
    cwd: str,
    concurrency: int,
    differential: bool,
    exclude: tuple[str, ...],
    flip_exclude: bool,
    **connection: Any,
) -> None:
    """Download the objects under a prefix.

    Examples:
        bucketsync download -b my-bucket -d site/ -C ./backup
        bucketsync download -b my-bucket -d site/ -C ./backup --differential
    """
    options = _build_options(**connection, download_concurrency=concurrency)
    spec = SyncSpec(
        action=SyncAction.DOWNLOAD,
        dest=dest,
        cwd=cwd,
        exclude=exclude or None,
        flip_exclude=flip_exclude,
        differential=differential,
    )
    execute_sync(ctx, options, [spec])


@main.command()
@click.option("--dest", "-d", required=True, help="Prefix to delete ('/' for all)")
@click.option(
    "--cwd",
    "-C",
    type=click.Path(file_okay=False),
    help="Local directory (required with --differential)",
)
@connection_options
@exclude_options
@click.pass_context
def delete(
    ctx: Any,
    dest: str,
    cwd: Optional[str],
    differential: bool,
    exclude: tuple[str, ...],
    flip_exclude: bool,
    **connection: Any,
) -> None:
    """Delete the objects under a prefix.

    With --differential, only objects without a local counterpart in
    --cwd are deleted.

    Examples:
        bucketsync delete -b my-bucket -d old/
        bucketsync delete -b my-bucket -d site/ -C build --differential
        bucketsync delete -b my-bucket -d tmp/ -x "*.tmp" --flip-exclude
    """
    options = _build_options(**connection)
    spec = SyncSpec(
        action=SyncAction.DELETE,
        dest=dest,
        cwd=cwd,
        exclude=exclude or None,
        flip_exclude=flip_exclude,
        differential=differential,
    )
    execute_sync(ctx, options, [spec])


if __name__ == "__main__":
    main()
