import sys
import traceback
import typing
from functools import wraps

import click

from . import VERSION
from .actions import DeployContext, check_configuration, deploy_content, set_verbosity
from .api import RSConnectServer
from .bundle import (
    DEFAULT_BUNDLE_FILE,
    DEFAULT_ENTRYPOINT,
    DEFAULT_INCLUDES,
    DEFAULT_MANIFEST,
    DEFAULT_MANIFEST_COMMAND,
)
from .certificates import read_certificate_file
from .exception import ConfigurationException, RSConnectException
from .log import VERBOSE, LogOutputFormat, logger
from .metadata import DEFAULT_GUID_FILE
from .models import Decision
from .timeouts import get_task_timeout


def cli_exception_handler(func):
    """Report any failure as a single red line and exit 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except RSConnectException as exc:
            message = "Error: " + exc.message
        except Exception as exc:
            if logger.is_debugging():
                traceback.print_exc()
            message = "Internal error: " + str(exc)
        click.secho(message, fg="bright_red")
        sys.exit(1)

    return wrapper


def output_params(params: typing.Mapping[str, typing.Any]):
    logger.log(VERBOSE, "Detected the following inputs:")
    for name, value in params.items():
        if value is None or name == "verbose":
            continue
        logger.log(VERBOSE, "    %-18s%s", name + ":", "**********" if name == "api_key" else value)


class DeployCommand(click.Command):
    """Reports usage errors with exit status 1, like every other failure."""

    def parse_args(self, ctx: click.Context, args: typing.List[str]) -> typing.List[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as exc:
            exc.exit_code = 1
            raise


def _print_help_and_fail(ctx: click.Context, param: click.Parameter, value: bool):
    if not value or ctx.resilient_parsing:
        return
    click.echo(ctx.get_help())
    ctx.exit(1)


def _print_version(ctx: click.Context, param: click.Parameter, value: bool):
    if not value or ctx.resilient_parsing:
        return
    click.echo(VERSION)
    ctx.exit(0)


def _validate_title(ctx: click.Context, param: click.Parameter, value: str) -> str:
    title = value.strip()
    if not title:
        raise click.BadParameter("The title may not be empty.", ctx=ctx, param=param)
    return title


def connection_args(func):
    @click.option("--server", "-s", envvar="CONNECT_SERVER", help="Connect server URL. [env: CONNECT_SERVER]")
    @click.option("--api-key", "-k", envvar="CONNECT_API_KEY", help="Connect API key. [env: CONNECT_API_KEY]")
    @click.option(
        "--insecure",
        "-i",
        envvar="CONNECT_INSECURE",
        is_flag=True,
        help="Skip TLS certificate and host name checks. [env: CONNECT_INSECURE]",
    )
    @click.option(
        "--cacert",
        "-c",
        envvar="CONNECT_CA_CERTIFICATE",
        type=click.Path(dir_okay=False),
        help="File of CA certificates to trust. [env: CONNECT_CA_CERTIFICATE]",
    )
    @wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def layout_args(func):
    @click.option(
        "--include",
        "includes",
        multiple=True,
        help="Path to put in the bundle, in order; repeat for more. [default: %s]" % ", ".join(DEFAULT_INCLUDES),
    )
    @click.option("--entrypoint", default=DEFAULT_ENTRYPOINT, show_default=True, help="Entry point file.")
    @click.option("--manifest", default=DEFAULT_MANIFEST, show_default=True, help="Manifest file.")
    @click.option(
        "--manifest-command",
        default=DEFAULT_MANIFEST_COMMAND,
        show_default=True,
        help="Command run to write a missing manifest.",
    )
    @click.option("--bundle-file", default=DEFAULT_BUNDLE_FILE, show_default=True, help="Where the bundle is built.")
    @click.option(
        "--guid-file",
        default=DEFAULT_GUID_FILE,
        show_default=True,
        help="Marker file holding the guid of the content to redeploy.",
    )
    @wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def polling_args(func):
    @click.option(
        "--poll-wait",
        type=click.IntRange(min=0),
        default=1,
        show_default=True,
        help="Seconds Connect may hold each task status request.",
    )
    @click.option(
        "--max-polls",
        type=click.IntRange(min=1),
        help="Fail after this many task status requests. [default: no limit]",
    )
    @wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


@click.command(
    cls=DeployCommand,
    context_settings={"help_option_names": []},
    help=(
        "Bundle the application in the current directory and deploy it to Posit Connect as TITLE.\n\n"
        "The guid of the content item is kept in a marker file, so later runs from the same "
        "directory deploy a new bundle to the same item."
    ),
)
@click.option(
    "--help",
    "-h",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=_print_help_and_fail,
    help="Show this message and exit.",
)
@click.option(
    "--version",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=_print_version,
    help="Show the version and exit.",
)
@connection_args
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Create missing files and go on without asking.")
@click.option("--no", "-n", "assume_no", is_flag=True, help="Stop on missing files without asking.")
@layout_args
@polling_args
@click.option(
    "--format",
    "-f",
    type=click.Choice(LogOutputFormat._all),
    default=LogOutputFormat.DEFAULT,
    help="Log output format. [default: text]",
)
@click.option("--verbose", "-v", count=True, help="Verbose output; -vv for debug output.")
@click.argument("title", callback=_validate_title)
@cli_exception_handler
def cli(
    server: typing.Optional[str],
    api_key: typing.Optional[str],
    insecure: bool,
    cacert: typing.Optional[str],
    assume_yes: bool,
    assume_no: bool,
    includes: typing.Tuple[str, ...],
    entrypoint: str,
    manifest: str,
    manifest_command: str,
    bundle_file: str,
    guid_file: str,
    poll_wait: int,
    max_polls: typing.Optional[int],
    format: str,
    verbose: int,
    title: str,
):
    set_verbosity(verbose)
    logger.set_log_output_format(format)
    output_params(locals())

    check_configuration(server, api_key)
    decision = Decision.from_flags(assume_yes, assume_no)
    if insecure and cacert:
        raise ConfigurationException("-i/--insecure and -c/--cacert may not be used together.")
    ca_data = read_certificate_file(cacert) if cacert else None

    # entrypoint and manifest always lead the default allow-list
    if not includes:
        includes = (manifest, entrypoint) + DEFAULT_INCLUDES[2:]

    deploy_ctx = DeployContext(
        title=title,
        server=RSConnectServer(server.strip(), api_key.strip(), insecure, ca_data),
        decision=decision,
        includes=includes,
        entrypoint=entrypoint,
        manifest=manifest,
        manifest_command=manifest_command,
        bundle_file=bundle_file,
        guid_file=guid_file,
        poll_wait=poll_wait,
        task_timeout=get_task_timeout(),
        max_polls=max_polls,
    )
    deploy_content(deploy_ctx)


if __name__ == "__main__":
    cli()
