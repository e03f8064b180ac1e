"""
The deployment pipeline: preconditions, bundling, registration, upload, deploy and cleanup.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
from os.path import exists, isdir, join
from typing import Callable, Optional, Sequence

import click

from .api import RSConnectClient, RSConnectServer, make_unique_name
from .bundle import (
    DEFAULT_BUNDLE_FILE,
    DEFAULT_ENTRYPOINT,
    DEFAULT_INCLUDES,
    DEFAULT_MANIFEST,
    DEFAULT_MANIFEST_COMMAND,
    make_bundle_archive,
    partition_paths,
    run_manifest_command,
    write_entrypoint_stub,
)
from .exception import ConfigurationException, LocalInputException, RSConnectException
from .log import VERBOSE, logger, stage_logged, task_logger
from .metadata import DEFAULT_GUID_FILE, GuidStore
from .models import Decision, DeployState


def set_verbosity(verbose: int):
    """Set the verbosity level based on a passed flag

    :param verbose: the number of times -v was given
    """
    if verbose == 0:
        logger.setLevel(logging.INFO)
    elif verbose == 1:
        logger.setLevel(VERBOSE)
    else:
        logger.setLevel(logging.DEBUG)


class CleanupRegistry(object):
    """
    Paths to remove at the end of a run.  Files that only make sense for a
    completed setup go on the error list; transient build output goes on the
    success list.
    """

    def __init__(self) -> None:
        self.on_error: list[str] = []
        self.on_success: list[str] = []

    def add_on_error(self, path: str):
        if path not in self.on_error:
            self.on_error.append(path)

    def add_on_success(self, path: str):
        if path not in self.on_success:
            self.on_success.append(path)

    def clean_on_error(self):
        remove_paths(self.on_error)

    def clean_on_success(self):
        remove_paths(self.on_success)


def remove_paths(paths: Sequence[str]):
    """Remove each path that exists.  Paths that are already gone are skipped."""
    for path in paths:
        if isdir(path):
            logger.info("Removing %s" % path)
            shutil.rmtree(path, ignore_errors=True)
        elif exists(path):
            logger.info("Removing %s" % path)
            try:
                os.remove(path)
            except FileNotFoundError:
                pass


@dataclasses.dataclass
class DeployContext:
    """Everything one deployment run knows, filled in as the stages progress."""

    title: str
    server: RSConnectServer
    decision: str = Decision.ASK
    base_dir: str = "."
    includes: Sequence[str] = DEFAULT_INCLUDES
    entrypoint: str = DEFAULT_ENTRYPOINT
    manifest: str = DEFAULT_MANIFEST
    manifest_command: str = DEFAULT_MANIFEST_COMMAND
    bundle_file: str = DEFAULT_BUNDLE_FILE
    guid_file: str = DEFAULT_GUID_FILE
    poll_wait: int = 1
    task_timeout: Optional[int] = None
    max_polls: Optional[int] = None
    cleanup: CleanupRegistry = dataclasses.field(default_factory=CleanupRegistry)

    content_guid: Optional[str] = None
    content_created: bool = False
    bundle_id: Optional[str] = None
    task_id: Optional[str] = None
    state: str = DeployState.PENDING
    content_url: Optional[str] = None

    def path(self, name: str) -> str:
        return join(self.base_dir, name)


def check_configuration(server: Optional[str], api_key: Optional[str]):
    """Both values are required and are only checked for being non-empty."""
    if not server or not server.strip():
        raise ConfigurationException(
            "A Posit Connect server URL is required. Use -s/--server or set CONNECT_SERVER."
        )
    if not api_key or not api_key.strip():
        raise ConfigurationException("An API key is required. Use -k/--api-key or set CONNECT_API_KEY.")


def confirm(ctx: DeployContext, question: str) -> bool:
    if ctx.decision == Decision.YES:
        return True
    if ctx.decision == Decision.NO:
        return False
    try:
        return click.confirm(question, default=False)
    except click.Abort:
        return False


def ensure_entrypoint(ctx: DeployContext):
    path = ctx.path(ctx.entrypoint)
    if exists(path):
        return
    if not confirm(ctx, "%s does not exist. Create a default one?" % ctx.entrypoint):
        raise LocalInputException("%s does not exist." % ctx.entrypoint)
    logger.info("Creating %s" % ctx.entrypoint)
    write_entrypoint_stub(path)
    ctx.cleanup.add_on_error(path)


def ensure_manifest(ctx: DeployContext, run_command: Callable[..., str] = run_manifest_command):
    path = ctx.path(ctx.manifest)
    if exists(path):
        return
    if not confirm(ctx, "%s does not exist. Generate it with '%s'?" % (ctx.manifest, ctx.manifest_command)):
        raise LocalInputException("%s does not exist." % ctx.manifest)
    logger.info("Generating %s" % ctx.manifest)
    # registered first so that partial output is removed if generation fails
    ctx.cleanup.add_on_error(path)
    run_command(ctx.manifest_command, ctx.base_dir)
    if not exists(path):
        raise LocalInputException("The manifest command '%s' did not create %s." % (ctx.manifest_command, path))


def assemble_bundle(ctx: DeployContext) -> str:
    present, missing = partition_paths(ctx.includes, ctx.base_dir)
    for name in missing:
        logger.warning("Warning: %s not found; it will not be included in the bundle." % name)
    if missing and not confirm(ctx, "Some files are missing. Continue anyway?"):
        raise LocalInputException("Deployment aborted because of missing files: %s" % ", ".join(missing))
    if not present:
        raise LocalInputException("None of the files to bundle exist: %s" % ", ".join(ctx.includes))

    archive = ctx.path(ctx.bundle_file)
    ctx.cleanup.add_on_success(archive)
    logger.info("Bundling %s" % ", ".join(present))
    return make_bundle_archive(present, archive, ctx.base_dir)


@stage_logged("Registering content...")
def register_content(ctx: DeployContext, client: RSConnectClient) -> str:
    store = GuidStore(ctx.path(ctx.guid_file))
    guid = store.read()
    if guid is not None:
        logger.info("Reusing content %s from %s" % (guid, store.path))
        ctx.content_guid = guid
        ctx.content_created = False
        return guid

    content = client.content_create(make_unique_name(ctx.title), ctx.title)
    ctx.content_guid = content["guid"]
    ctx.content_created = True
    ctx.cleanup.add_on_error(store.path)
    store.write(ctx.content_guid)
    return ctx.content_guid


@stage_logged("Uploading bundle...")
def upload_bundle(ctx: DeployContext, client: RSConnectClient) -> str:
    archive = ctx.path(ctx.bundle_file)
    try:
        with open(archive, "rb") as tarball:
            record = client.content_upload_bundle(ctx.content_guid, tarball.read())
    except OSError as error:
        raise LocalInputException("Unable to read the bundle %s: %s" % (archive, error), cause=error)
    ctx.bundle_id = record["id"]
    return ctx.bundle_id


@stage_logged("Starting deployment...")
def start_deploy(ctx: DeployContext, client: RSConnectClient) -> str:
    task = client.content_deploy(ctx.content_guid, ctx.bundle_id)
    ctx.task_id = task["task_id"]
    ctx.state = DeployState.STARTED
    return ctx.task_id


def wait_for_deploy(
    ctx: DeployContext,
    client: RSConnectClient,
    log_callback: Callable[[str], None] = task_logger.info,
):
    ctx.state = DeployState.POLLING
    client.wait_for_task(
        ctx.task_id,
        log_callback,
        poll_wait=ctx.poll_wait,
        timeout=ctx.task_timeout,
        max_polls=ctx.max_polls,
    )
    ctx.state = DeployState.FINISHED_OK


def rollback_content(ctx: DeployContext, client: RSConnectClient):
    """Delete the content item, but only if this run created it."""
    if not ctx.content_created or not ctx.content_guid:
        return
    logger.info("Deleting content %s" % ctx.content_guid)
    try:
        client.content_delete(ctx.content_guid)
    except RSConnectException as exc:
        logger.warning("Unable to delete content %s: %s" % (ctx.content_guid, exc.message))


def report_content_url(ctx: DeployContext, client: RSConnectClient) -> Optional[str]:
    try:
        content = client.content_get(ctx.content_guid)
    except RSConnectException as exc:
        logger.warning("The deployment succeeded but the content URL could not be retrieved: %s" % exc.message)
        return None
    ctx.content_url = content["content_url"]
    task_logger.info("Deployment completed successfully.")
    if content.get("dashboard_url"):
        task_logger.info("\t Dashboard content URL: %s", content["dashboard_url"])
    task_logger.info("\t Direct content URL: %s", ctx.content_url)
    return ctx.content_url


def deploy_content(
    ctx: DeployContext,
    client: Optional[RSConnectClient] = None,
    log_callback: Callable[[str], None] = task_logger.info,
) -> Optional[str]:
    """
    Run a whole deployment.  On any failure the error cleanup list is removed,
    content created by this run is deleted, and the exception propagates.

    :return: the deployed content's URL, if it could be retrieved.
    """
    if client is None:
        client = RSConnectClient(ctx.server)

    try:
        ensure_entrypoint(ctx)
        ensure_manifest(ctx)
        assemble_bundle(ctx)
        register_content(ctx, client)
        upload_bundle(ctx, client)
        start_deploy(ctx, client)
        wait_for_deploy(ctx, client, log_callback)
    except Exception:
        if ctx.state in (DeployState.STARTED, DeployState.POLLING):
            ctx.state = DeployState.FINISHED_ERROR
        ctx.cleanup.clean_on_error()
        rollback_content(ctx, client)
        raise

    ctx.cleanup.clean_on_success()
    return report_content_url(ctx, client)
