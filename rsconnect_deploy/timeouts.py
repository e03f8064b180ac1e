import os
import textwrap

from typing import Optional, Union

from rsconnect_deploy.exception import ConfigurationException

_CONNECT_REQUEST_TIMEOUT_KEY: str = "CONNECT_REQUEST_TIMEOUT"
_CONNECT_REQUEST_TIMEOUT_DEFAULT_VALUE: str = "300"

_CONNECT_TASK_TIMEOUT_KEY: str = "CONNECT_TASK_TIMEOUT"


def get_request_timeout() -> int:
    """Gets the timeout from the CONNECT_REQUEST_TIMEOUT env variable.

    The timeout value is intended to be interpreted in seconds. A value of 60 is equal to sixty seconds, or one minute.

    If CONNECT_REQUEST_TIMEOUT is unset, a default value of 300 is used.

    If CONNECT_REQUEST_TIMEOUT is set to a value less than 0, a `ConfigurationException` is raised.

    A CONNECT_REQUEST_TIMEOUT set to 0 is logically equivalent to no timeout.

    :raises: `ConfigurationException` if CONNECT_REQUEST_TIMEOUT is not a natural number.
    :return: the timeout value
    """
    timeout: Union[int, str] = os.environ.get(_CONNECT_REQUEST_TIMEOUT_KEY, _CONNECT_REQUEST_TIMEOUT_DEFAULT_VALUE)

    try:
        timeout = int(timeout)
    except ValueError:
        raise ConfigurationException(
            f"'CONNECT_REQUEST_TIMEOUT' is set to '{timeout}'. The value must be a non-negative integer."
        )

    if timeout < 0:
        raise ConfigurationException(
            f"'CONNECT_REQUEST_TIMEOUT' is set to '{timeout}'. The value must be a non-negative integer."
        )

    return timeout


def get_task_timeout() -> Optional[int]:
    """Gets the timeout from the CONNECT_TASK_TIMEOUT env variable.

    The timeout value is intended to be interpreted in seconds. If CONNECT_TASK_TIMEOUT is unset or empty,
    None is returned and deployment tasks are polled until the server reports that they finished.

    :raises: `ConfigurationException` if CONNECT_TASK_TIMEOUT is set but is not a positive integer.
    :return: the timeout value, or None for no timeout
    """
    timeout: Union[int, str, None] = os.environ.get(_CONNECT_TASK_TIMEOUT_KEY)
    if not timeout:
        return None

    try:
        timeout = int(timeout)
    except ValueError:
        raise ConfigurationException(
            f"'CONNECT_TASK_TIMEOUT' is set to '{timeout}'. The value must be a positive integer."
        )

    if timeout <= 0:
        raise ConfigurationException(
            f"'CONNECT_TASK_TIMEOUT' is set to '{timeout}'. The value must be a positive integer."
        )

    return timeout


def get_task_timeout_help_message(timeout: int) -> str:
    """Gets a human friendly help message for adjusting the task timeout value."""

    return f"The task timed out after {timeout} seconds." + textwrap.dedent(
        f"""

        You may try increasing the task timeout value using the {_CONNECT_TASK_TIMEOUT_KEY} environment variable,
        or unset it to wait until Connect reports that the task has finished.

        Example:

            CONNECT_TASK_TIMEOUT=3600 rsconnect-deploy --server <your-server> --api-key <your-api-key> "My API"
        """  # noqa: E501
    )


def get_max_polls_help_message(max_polls: int) -> str:
    """Gets a human friendly help message for adjusting the poll budget."""

    return f"The task did not finish within {max_polls} status checks." + textwrap.dedent(
        """

        You may try increasing --max-polls, or omit it to wait until Connect reports that the task has finished.
        """
    )
