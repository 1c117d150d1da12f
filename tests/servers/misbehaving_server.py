"""Stand-in MCP server with scripted failure modes.

Usage: ``python misbehaving_server.py <mode>`` where mode is one of

* ``exit``   write to stderr and exit with status 3 before answering
* ``hang``   read the request and never answer
* ``reject`` answer initialize with a JSON-RPC error
* ``noisy``  print a banner line, then answer correctly
"""

import json
import sys
import time


def _answer(request_id, result=None, error=None):
    message = {"jsonrpc": "2.0", "id": request_id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def main(mode):
    if mode == "exit":
        sys.stderr.write("fatal: missing API token\n")
        sys.stderr.flush()
        sys.exit(3)

    request = json.loads(sys.stdin.readline())
    if mode == "hang":
        time.sleep(60)
        return
    if mode == "reject":
        _answer(request["id"], error={"code": -32602, "message": "unsupported protocol"})
        return

    if mode == "noisy":
        sys.stdout.write("starting misbehaving server v0\n")
    _answer(
        request["id"],
        result={
            "protocolVersion": request["params"]["protocolVersion"],
            "capabilities": {},
            "serverInfo": {"name": "misbehaving", "version": "0.0.1"},
        },
    )
    # Wait for EOF on stdin, like a real stdio server.
    for _line in sys.stdin:
        pass


if __name__ == "__main__":
    main(sys.argv[1])
