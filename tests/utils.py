import json
import os
from os.path import dirname, join

import httpretty

CONNECT_SERVER = "http://connect.example"
CONNECT_API = CONNECT_SERVER + "/__api__"


def apply_common_args(args: list, server=None, key=None, cacert=None, insecure=False):
    if server:
        args.extend(["-s", server])
    if key:
        args.extend(["-k", key])
    if cacert:
        args.extend(["--cacert", cacert])
    if insecure:
        args.extend(["--insecure"])


def write_files(base_dir, files):
    """Create each relative path in files with the given text content."""
    for name, content in files.items():
        path = join(base_dir, name)
        if dirname(path):
            os.makedirs(dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(content)


def json_response(data, status=200):
    return httpretty.Response(
        body=json.dumps(data),
        status=status,
        forcing_headers={"Content-Type": "application/json"},
    )


def register_json(method, path, data, status=200):
    httpretty.register_uri(method, CONNECT_API + path, responses=[json_response(data, status)])


def load_json(data):
    if isinstance(data, bytes):
        return json.loads(data.decode())
    return json.loads(data)
