"""
Posit Connect v1 API client and utility functions
"""

from __future__ import annotations

import re
import secrets
import time
from typing import IO, Any, Callable, Mapping, Optional, cast

from .exception import DeploymentFailedException, RemoteCallException
from .http_support import HTTPResponse, HTTPServer, append_to_path
from .log import logger
from .models import BundleRecord, ContentItemV1, DeployTaskDTO, FieldType, TaskStatusV1, require_fields
from .timeouts import get_max_polls_help_message, get_task_timeout_help_message

_name_sub_pattern = re.compile(r"[^A-Za-z0-9_ -]+")
_repeating_sub_pattern = re.compile(r"_+")

# Connect content names are limited to 64 characters.
_MAX_NAME_LENGTH = 64
_NAME_SUFFIX_BYTES = 8


class RSConnectServer(object):
    """Where a Connect server is and how to authenticate and verify it."""

    remote_name = "Posit Connect"

    def __init__(
        self,
        url: str,
        api_key: str,
        insecure: bool = False,
        ca_data: Optional[str | bytes] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.insecure = insecure
        self.ca_data = ca_data


def check_response(response: HTTPResponse, remote_name: str = RSConnectServer.remote_name) -> HTTPResponse:
    """
    Raise RemoteCallException unless the request got a 2xx answer.

    When the server explains a failure in the JSON `error` field, that text is
    part of the message and is kept as the exception's server_error.
    """
    if response.exception is not None:
        raise RemoteCallException(
            "Unable to reach %s (calling %s): %s" % (remote_name, response.full_uri, response.exception),
            cause=response.exception,
        )
    if response.ok:
        return response

    data = response.json_data
    server_error = data.get("error") if isinstance(data, dict) else None
    if server_error:
        raise RemoteCallException(
            "%s reported an error (calling %s): %s" % (remote_name, response.full_uri, server_error),
            server_error=str(server_error),
        )
    raise RemoteCallException(
        "Received an unexpected response from %s (calling %s): %s %s"
        % (remote_name, response.full_uri, response.status, response.reason)
    )


class RSConnectClient(HTTPServer):
    def __init__(self, server: RSConnectServer):
        super(RSConnectClient, self).__init__(append_to_path(server.url, "__api__"), server.insecure, server.ca_data)
        self._server = server
        if server.api_key:
            self.key_authorization(server.api_key)

    def _fields(self, response: HTTPResponse, fields: Mapping[str, FieldType], what: str) -> dict[str, Any]:
        check_response(response, self._server.remote_name)
        return require_fields(response.json_data, fields, what)

    def content_create(self, name: str, title: str) -> ContentItemV1:
        # a redirect means this is not the Connect API
        response = self.post("v1/content", body={"name": name, "title": title}, follow_redirects=False)
        return cast(ContentItemV1, self._fields(response, {"guid": str}, "content creation"))

    def content_get(self, content_guid: str) -> ContentItemV1:
        response = self.get("v1/content/%s" % content_guid)
        return cast(ContentItemV1, self._fields(response, {"guid": str, "content_url": str}, "content"))

    def content_delete(self, content_guid: str):
        check_response(self.delete("v1/content/%s" % content_guid), self._server.remote_name)

    def content_upload_bundle(self, content_guid: str, tarball: bytes | IO[bytes]) -> BundleRecord:
        response = self.post(
            "v1/content/%s/bundles" % content_guid,
            body=tarball,
            headers={"Content-Type": "application/gzip"},
        )
        record = self._fields(response, {"id": (str, int)}, "bundle upload")
        record["id"] = str(record["id"])
        return cast(BundleRecord, record)

    def content_deploy(self, content_guid: str, bundle_id: str) -> DeployTaskDTO:
        response = self.post("v1/content/%s/deploy" % content_guid, body={"bundle_id": bundle_id})
        task = self._fields(response, {"task_id": (str, int)}, "deploy")
        task["task_id"] = str(task["task_id"])
        return cast(DeployTaskDTO, task)

    def task_get(self, task_id: str, first: Optional[int] = None, wait: Optional[int] = None) -> TaskStatusV1:
        params = {key: value for key, value in (("wait", wait), ("first", first)) if value is not None}
        response = self.get("v1/tasks/%s" % task_id, query_params=params)
        task = self._fields(response, {"finished": bool, "code": int, "last": int}, "task status")
        if not isinstance(task.get("output"), list):
            task["output"] = []
        return cast(TaskStatusV1, task)

    def wait_for_task(
        self,
        task_id: str,
        log_callback: Callable[[str], None],
        poll_wait: int = 1,
        timeout: Optional[int] = None,
        max_polls: Optional[int] = None,
        first: int = 0,
    ) -> TaskStatusV1:
        """
        Poll a task until Connect reports it finished, feeding each response's `last`
        cursor into the next request's `first` so that log lines are fetched once.

        A non-zero `code` in any response fails the task straight away, whether or not
        `finished` is set.

        :param task_id: the task to poll.
        :param log_callback: receives each new line of task output.
        :param poll_wait: the long-poll `wait` parameter, in seconds.
        :param timeout: give up after this many seconds. None polls indefinitely.
        :param max_polls: give up after this many requests. None polls indefinitely.
        :param first: the initial log cursor.
        :return: the final task status.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        polls = 0
        while True:
            if max_polls is not None and polls >= max_polls:
                raise DeploymentFailedException(get_max_polls_help_message(max_polls))
            if deadline is not None and time.monotonic() > deadline:
                raise DeploymentFailedException(get_task_timeout_help_message(cast(int, timeout)))

            status = self.task_get(task_id, first=first, wait=poll_wait)
            polls += 1
            for line in status["output"]:
                log_callback(line)
            first = status["last"]
            logger.debug("Task %s: finished=%s code=%s last=%s", task_id, status["finished"], status["code"], first)

            if status["code"] != 0:
                message = "Task exited with status %d." % status["code"]
                error = status.get("error")
                if error:
                    log_callback("Error from Connect server: %s" % error)
                    message = "%s %s" % (message, error)
                raise DeploymentFailedException(message)
            if status["finished"]:
                return status


def make_unique_name(title: str, token_hex: Callable[[int], str] = secrets.token_hex) -> str:
    """
    Produce a content name from a title.  The title is lower cased, reduced to
    letters, digits, dashes and underscores, and followed by a random suffix so
    that repeated deployments of the same title never collide.

    :param title: the content title.
    :param token_hex: the source of the random suffix.
    :return: a name for the content, at most 64 characters long.
    """
    suffix = token_hex(_NAME_SUFFIX_BYTES)
    name = _name_sub_pattern.sub("", title.lower()).replace(" ", "_")
    name = _repeating_sub_pattern.sub("_", name).strip("_")
    name = name[: _MAX_NAME_LENGTH - len(suffix) - 1]
    if not name:
        return suffix
    return "%s-%s" % (name, suffix)
