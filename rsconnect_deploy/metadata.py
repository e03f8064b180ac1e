"""
Metadata management objects and utility functions
"""

from __future__ import annotations

import os
from os.path import abspath, dirname, exists

from .exception import LocalInputException
from .log import logger

DEFAULT_GUID_FILE = ".rsconnect_guid"


def makedirs(filepath: str):
    """Create the parent directories of filepath.

    `filepath` itself is not created.
    It is not an error if the directories already exist.
    """
    try:
        os.makedirs(dirname(abspath(filepath)))
    except OSError:
        pass


class GuidStore(object):
    """
    The marker file holding the guid of the content item this directory deploys to.

    Its presence means the content already exists on the server and is reused
    instead of creating a new one.  The guid is trusted as is; it is not checked
    against the server.
    """

    def __init__(self, path: str = DEFAULT_GUID_FILE):
        self.path = path

    def read(self) -> str | None:
        """
        Return the stored guid, or None when the file is missing or empty.
        Only the first line is used and surrounding whitespace is ignored.
        """
        if not exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                guid = f.readline().strip()
        except OSError as error:
            raise LocalInputException("Unable to read %s: %s" % (self.path, error), cause=error)
        return guid or None

    def write(self, guid: str):
        makedirs(self.path)
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(guid + "\n")
        except OSError as error:
            raise LocalInputException("Unable to write %s: %s" % (self.path, error), cause=error)
        logger.debug("Saved content guid %s to %s" % (guid, self.path))
