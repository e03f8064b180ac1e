"""
Data models
"""

from __future__ import annotations

import sys
from typing import Any, Mapping, Sequence, Tuple, Type, Union

# Even though TypedDict is available in Python 3.8, because it's used with NotRequired,
# they should both come from the same typing module.
# https://peps.python.org/pep-0655/#usage-in-python-3-11
if sys.version_info >= (3, 11):
    from typing import NotRequired, TypedDict
else:
    from typing_extensions import NotRequired, TypedDict

from .exception import ConfigurationException, MalformedResponseException


class Decision:
    """How the run answers yes/no questions about missing local inputs.

    Selected once from the command line flags and consulted at every prompt site.
    """

    YES = "yes"  # proceed/create without asking
    NO = "no"  # refuse without asking
    ASK = "ask"  # prompt the operator

    @staticmethod
    def from_flags(assume_yes: bool, assume_no: bool) -> str:
        if assume_yes and assume_no:
            raise ConfigurationException("--yes and --no may not be used together.")
        if assume_yes:
            return Decision.YES
        if assume_no:
            return Decision.NO
        return Decision.ASK


class DeployState:
    PENDING = "PENDING"  # nothing sent to the deploy endpoint yet
    STARTED = "STARTED"  # deploy task created
    POLLING = "POLLING"  # waiting for the task to finish
    FINISHED_OK = "FINISHED_OK"  # finished with code 0
    FINISHED_ERROR = "FINISHED_ERROR"  # non-zero code, or polling gave up


# https://docs.posit.co/connect/api/#get-/v1/content/-guid-
class ContentItemV1(TypedDict):
    guid: str
    name: str
    title: str | None
    content_url: str
    dashboard_url: NotRequired[str]
    bundle_id: NotRequired[str | None]


# https://docs.posit.co/connect/api/#post-/v1/content/-guid-/bundles
class BundleRecord(TypedDict):
    id: str
    content_guid: NotRequired[str]
    size: NotRequired[int]


# https://docs.posit.co/connect/api/#post-/v1/content/-guid-/deploy
class DeployTaskDTO(TypedDict):
    task_id: str


class TaskStatusResult(TypedDict):
    type: str
    data: object


# https://docs.posit.co/connect/api/#get-/v1/tasks/-id-
class TaskStatusV1(TypedDict):
    id: str
    output: list[str]
    finished: bool
    code: int
    error: str
    last: int
    result: NotRequired[TaskStatusResult | None]


FieldType = Union[Type[Any], Tuple[Type[Any], ...]]


def require_fields(data: object, fields: Mapping[str, FieldType], what: str) -> dict[str, Any]:
    """
    Check that a decoded JSON body is an object carrying each of the named fields with
    a value of the expected type.

    :param data: the decoded response body.
    :param fields: field name to expected type(s).
    :param what: a short description of the response, used in error messages.
    :return: the body, now known to be a dict.
    """
    if not isinstance(data, dict):
        raise MalformedResponseException("Malformed %s response: expected a JSON object, got %r." % (what, data))
    for name, expected in fields.items():
        if name not in data or data[name] is None:
            raise MalformedResponseException("Malformed %s response: the '%s' field is missing." % (what, name))
        value = data[name]
        # bool is an int, and is never a valid id or cursor
        if isinstance(value, bool) and bool not in _as_tuple(expected):
            raise MalformedResponseException(
                "Malformed %s response: the '%s' field has an unexpected value %r." % (what, name, value)
            )
        if not isinstance(value, expected):
            raise MalformedResponseException(
                "Malformed %s response: the '%s' field has an unexpected value %r." % (what, name, value)
            )
    return data


def _as_tuple(expected: FieldType) -> Sequence[Type[Any]]:
    return expected if isinstance(expected, tuple) else (expected,)
