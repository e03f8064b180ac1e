import json
from unittest import TestCase
from unittest.mock import patch

import httpretty

from rsconnect_deploy.api import RSConnectClient, RSConnectServer, check_response, make_unique_name
from rsconnect_deploy.exception import (
    DeploymentFailedException,
    MalformedResponseException,
    RemoteCallException,
    RSConnectException,
)
from rsconnect_deploy.http_support import HTTPResponse

SERVER = "http://connect.example"
API = SERVER + "/__api__"


def register_json(method, path, data, status=200):
    httpretty.register_uri(
        method,
        API + path,
        body=json.dumps(data),
        status=status,
        forcing_headers={"Content-Type": "application/json"},
    )


def task_response(finished, code, last, output=None, error=""):
    return httpretty.Response(
        body=json.dumps(
            {
                "id": "9",
                "output": output or [],
                "finished": finished,
                "code": code,
                "error": error,
                "last": last,
            }
        ),
        status=200,
        forcing_headers={"Content-Type": "application/json"},
    )


class TestAPI(TestCase):
    def test_make_unique_name(self):
        def fixed(_):
            return "0123456789abcdef"

        self.assertEqual(make_unique_name("title", fixed), "title-0123456789abcdef")
        self.assertEqual(make_unique_name("My Title", fixed), "my_title-0123456789abcdef")
        self.assertEqual(make_unique_name("My  Title", fixed), "my_title-0123456789abcdef")
        self.assertEqual(make_unique_name("My _ Title", fixed), "my_title-0123456789abcdef")
        self.assertEqual(make_unique_name("My-Title", fixed), "my-title-0123456789abcdef")
        # noinspection SpellCheckingInspection
        self.assertEqual(make_unique_name("M\ry\n \tT℃itle", fixed), "my_title-0123456789abcdef")
        self.assertEqual(make_unique_name("℃℃", fixed), "0123456789abcdef")

    def test_make_unique_name_length(self):
        name = make_unique_name("x" * 200)
        self.assertEqual(len(name), 64)
        self.assertRegex(name, r"^x+-[0-9a-f]{16}$")

    def test_make_unique_name_is_unique(self):
        self.assertNotEqual(make_unique_name("My API"), make_unique_name("My API"))

    def test_connect_authorization_header(self):
        client = RSConnectClient(RSConnectServer(SERVER, "api_key"))
        self.assertEqual(client.headers["Authorization"], "Key api_key")

        client = RSConnectClient(RSConnectServer(SERVER, ""))
        self.assertNotIn("Authorization", client.headers)


class TestCheckResponse(TestCase):
    def test_ok(self):
        response = HTTPResponse("/__api__/v1/content/abc123", 204, "No Content")
        self.assertIs(check_response(response), response)

    def test_exception(self):
        response = HTTPResponse("/__api__/v1/content", exception=ConnectionRefusedError("refused"))
        with self.assertRaises(RemoteCallException) as context:
            check_response(response)
        self.assertIn("Unable to reach Posit Connect", context.exception.message)
        self.assertIsInstance(context.exception.cause, ConnectionRefusedError)

    def test_unexpected_status(self):
        response = HTTPResponse("/__api__/v1/content", 502, "Bad Gateway", {"Content-Type": "text/html"}, b"<html/>")
        with self.assertRaises(RemoteCallException) as context:
            check_response(response)
        self.assertIn("502 Bad Gateway", context.exception.message)
        self.assertIsNone(context.exception.server_error)

    def test_server_error_field(self):
        response = HTTPResponse(
            "/__api__/v1/content",
            409,
            "Conflict",
            {"Content-Type": "application/json"},
            b'{"error": "name already in use"}',
        )
        with self.assertRaises(RemoteCallException) as context:
            check_response(response)
        self.assertEqual(context.exception.server_error, "name already in use")
        self.assertIn("Posit Connect reported an error", context.exception.message)

    def test_error_field_on_success_is_ignored(self):
        response = HTTPResponse("/x", 200, "OK", {"Content-Type": "application/json"}, b'{"error": ""}')
        self.assertIs(check_response(response), response)



class TestRSConnectClient(TestCase):
    def setUp(self):
        self.client = RSConnectClient(RSConnectServer(SERVER, "my-key"))

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_create(self):
        register_json(httpretty.POST, "/v1/content", {"guid": "abc123", "name": "my_api-1"})
        content = self.client.content_create("my_api-1", "My API")

        self.assertEqual(content["guid"], "abc123")
        request = httpretty.last_request()
        self.assertEqual(json.loads(request.body), {"name": "my_api-1", "title": "My API"})
        self.assertEqual(request.headers["Authorization"], "Key my-key")

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_create_without_guid(self):
        register_json(httpretty.POST, "/v1/content", {"name": "my_api-1"})
        with self.assertRaises(MalformedResponseException):
            self.client.content_create("my_api-1", "My API")

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_create_redirect(self):
        httpretty.register_uri(
            httpretty.POST,
            API + "/v1/content",
            status=302,
            forcing_headers={"Location": SERVER + "/login"},
        )
        with self.assertRaises(RemoteCallException) as context:
            self.client.content_create("my_api-1", "My API")
        self.assertIn("Unexpected redirect", context.exception.message)
        self.assertEqual(len(httpretty.latest_requests()), 1)

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_create_server_error(self):
        register_json(httpretty.POST, "/v1/content", {"error": "Unauthorized", "code": 3}, status=401)
        with self.assertRaises(RemoteCallException) as context:
            self.client.content_create("my_api-1", "My API")
        self.assertEqual(context.exception.server_error, "Unauthorized")

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_get(self):
        register_json(
            httpretty.GET,
            "/v1/content/abc123",
            {
                "guid": "abc123",
                "content_url": SERVER + "/content/abc123/",
                "dashboard_url": SERVER + "/connect/#/apps/abc123",
            },
        )
        content = self.client.content_get("abc123")
        self.assertEqual(content["content_url"], SERVER + "/content/abc123/")

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_delete(self):
        httpretty.register_uri(httpretty.DELETE, API + "/v1/content/abc123", body="", status=204)
        self.assertIsNone(self.client.content_delete("abc123"))
        self.assertEqual(httpretty.last_request().method, "DELETE")

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_delete_failure(self):
        httpretty.register_uri(httpretty.DELETE, API + "/v1/content/abc123", body="nope", status=500)
        with self.assertRaises(RemoteCallException):
            self.client.content_delete("abc123")

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_upload_bundle(self):
        register_json(httpretty.POST, "/v1/content/abc123/bundles", {"id": 77, "content_guid": "abc123"})
        record = self.client.content_upload_bundle("abc123", b"\x1f\x8bbundle")

        self.assertEqual(record["id"], "77")
        request = httpretty.last_request()
        self.assertEqual(request.body, b"\x1f\x8bbundle")
        self.assertEqual(request.headers["Content-Type"], "application/gzip")

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_upload_bundle_failure(self):
        httpretty.register_uri(httpretty.POST, API + "/v1/content/abc123/bundles", body="boom", status=500)
        with self.assertRaises(RemoteCallException):
            self.client.content_upload_bundle("abc123", b"bundle")

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_content_deploy(self):
        register_json(httpretty.POST, "/v1/content/abc123/deploy", {"task_id": 9})
        task = self.client.content_deploy("abc123", "77")

        self.assertEqual(task["task_id"], "9")
        self.assertEqual(json.loads(httpretty.last_request().body), {"bundle_id": "77"})

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_task_get(self):
        register_json(httpretty.GET, "/v1/tasks/9", {"finished": False, "code": 0, "last": 4})
        task = self.client.task_get("9", first=2, wait=1)

        self.assertEqual(task["output"], [])
        self.assertEqual(httpretty.last_request().querystring, {"wait": ["1"], "first": ["2"]})

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_task_get_malformed(self):
        register_json(httpretty.GET, "/v1/tasks/9", {"finished": False, "code": 0})
        with self.assertRaises(MalformedResponseException):
            self.client.task_get("9")


class TestWaitForTask(TestCase):
    def setUp(self):
        self.client = RSConnectClient(RSConnectServer(SERVER, "my-key"))
        self.output = []

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_cursor_advances(self):
        httpretty.register_uri(
            httpretty.GET,
            API + "/v1/tasks/9",
            responses=[
                task_response(False, 0, 10, ["Building..."]),
                task_response(True, 0, 20, ["Done."]),
            ],
        )
        task = self.client.wait_for_task("9", self.output.append, poll_wait=1)

        self.assertTrue(task["finished"])
        self.assertEqual(self.output, ["Building...", "Done."])
        requests = httpretty.latest_requests()
        self.assertEqual(len(requests), 2)
        self.assertEqual(requests[0].querystring["first"], ["0"])
        self.assertEqual(requests[1].querystring["first"], ["10"])
        self.assertEqual(requests[1].querystring["wait"], ["1"])

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_nonzero_code_fails_before_finished(self):
        httpretty.register_uri(
            httpretty.GET,
            API + "/v1/tasks/9",
            responses=[
                task_response(False, 0, 3, ["Installing packages"]),
                task_response(False, 1, 5, ["Error: package not found"], error="install failed"),
                task_response(True, 0, 8),
            ],
        )
        with self.assertRaises(DeploymentFailedException) as context:
            self.client.wait_for_task("9", self.output.append)

        self.assertIn("Task exited with status 1.", context.exception.message)
        self.assertIn("install failed", context.exception.message)
        self.assertIn("Error from Connect server: install failed", self.output)
        self.assertEqual(len(httpretty.latest_requests()), 2)

    @httpretty.activate(verbose=True, allow_net_connect=False)
    def test_max_polls(self):
        httpretty.register_uri(
            httpretty.GET,
            API + "/v1/tasks/9",
            responses=[task_response(False, 0, n) for n in range(1, 6)],
        )
        with self.assertRaises(DeploymentFailedException) as context:
            self.client.wait_for_task("9", self.output.append, max_polls=3)

        self.assertIn("did not finish within 3 status checks", context.exception.message)
        self.assertEqual(len(httpretty.latest_requests()), 3)

    def test_timeout(self):
        with patch("rsconnect_deploy.api.time.monotonic", side_effect=[0, 100]):
            with self.assertRaises(DeploymentFailedException) as context:
                self.client.wait_for_task("9", self.output.append, timeout=10)
        self.assertIn("timed out after 10 seconds", context.exception.message)

    def test_failure_is_an_rsconnect_exception(self):
        self.assertTrue(issubclass(DeploymentFailedException, RSConnectException))
