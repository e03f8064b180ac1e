"""
Manifest generation and bundling utilities
"""

from __future__ import annotations

import os
import shlex
import subprocess
import tarfile
from os.path import abspath, exists, join, normpath
from typing import Callable, Optional, Sequence

from .exception import LocalInputException
from .log import VERBOSE, logger

DEFAULT_MANIFEST = "manifest.json"
DEFAULT_ENTRYPOINT = "entrypoint.R"
DEFAULT_BUNDLE_FILE = "bundle.tar.gz"
DEFAULT_MANIFEST_COMMAND = "Rscript -e 'rsconnect::writeManifest()'"

# Packaged in this order when present.
DEFAULT_INCLUDES = (
    DEFAULT_MANIFEST,
    DEFAULT_ENTRYPOINT,
    "plumber.R",
    "R",
    "data",
    "www",
)

ENTRYPOINT_STUB = """\
# Generated by rsconnect-deploy. Connect runs this file to start the API.
pr <- plumber::plumb("plumber.R")
pr
"""


def partition_paths(candidates: Sequence[str], base_dir: str = ".") -> tuple[list[str], list[str]]:
    """
    Split the allow-list into the entries that exist under base_dir and those that
    do not.  Both lists keep the allow-list order.
    """
    present: list[str] = []
    missing: list[str] = []
    for candidate in candidates:
        if exists(join(base_dir, candidate)):
            present.append(candidate)
        else:
            missing.append(candidate)
    return present, missing


def make_bundle_archive(present: Sequence[str], archive_path: str, base_dir: str = ".") -> str:
    """Create the gzipped tar bundle from the present allow-list entries.

    Any previous archive is replaced.  Entries are added in the order given;
    directories are added recursively.  The archive itself is never included.

    :return: the path of the archive.
    """
    archive_abs = abspath(archive_path)

    def _filter(info: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        if abspath(join(base_dir, info.name)) == archive_abs:
            return None
        logger.log(VERBOSE, "Adding file: %s", info.name)
        return info

    if exists(archive_path):
        logger.debug("Removing previous bundle %s" % archive_path)
        os.remove(archive_path)

    try:
        with tarfile.open(archive_path, mode="w:gz") as bundle:
            for rel_path in present:
                bundle.add(join(base_dir, rel_path), arcname=normpath(rel_path), filter=_filter)
    except OSError as error:
        raise LocalInputException("Unable to create the bundle %s: %s" % (archive_path, error), cause=error)

    return archive_path


def write_entrypoint_stub(path: str, contents: str = ENTRYPOINT_STUB):
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(contents)
    except OSError as error:
        raise LocalInputException("Unable to create %s: %s" % (path, error), cause=error)


def run_manifest_command(
    command: str,
    base_dir: str = ".",
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> str:
    """Run the external manifest generator in base_dir.

    Any text on stderr is treated as failure, even when the exit status is zero.

    :return: the command's stdout.
    """
    args = shlex.split(command)
    if not args:
        raise LocalInputException("No manifest command was given.")

    logger.log(VERBOSE, "Running: %s", command)
    try:
        result = run(args, cwd=base_dir, capture_output=True, text=True)
    except OSError as error:
        raise LocalInputException("Unable to run the manifest command '%s': %s" % (command, error), cause=error)

    stderr = (result.stderr or "").strip()
    if stderr:
        raise LocalInputException("The manifest command '%s' reported:\n%s" % (command, stderr))
    if result.returncode != 0:
        raise LocalInputException(
            "The manifest command '%s' exited with status %d." % (command, result.returncode)
        )
    return result.stdout or ""
