"""Minimal ACP agent used by the tests, driven by environment variables.

MOCK_ACP_STOP_REASON     stop reason returned from session/prompt (end_turn)
MOCK_ACP_RESPONSE_TEXT   text streamed as an agent_message_chunk before replying
MOCK_ACP_DELAY_MS        delay before answering session/prompt
MOCK_ACP_HANG_PROMPT     never answer session/prompt
MOCK_ACP_PROMPT_ERROR    answer session/prompt with a -32000 error
MOCK_ACP_PERMISSION      ask for permission during the prompt; the chosen
                         option (or the error code) is echoed back as a
                         message chunk
MOCK_ACP_FAIL_INIT       answer initialize with an error
"""

import json
import os
import sys
import time


def send(payload):
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


def reply(request_id, result):
    send({"jsonrpc": "2.0", "id": request_id, "result": result})


def reply_error(request_id, code, message):
    send({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})


def chunk(session_id, text):
    send(
        {
            "jsonrpc": "2.0",
            "method": "session/update",
            "params": {
                "sessionId": session_id,
                "update": {
                    "sessionUpdate": "agent_message_chunk",
                    "content": {"type": "text", "text": text},
                },
            },
        }
    )


def read_message():
    line = sys.stdin.readline()
    if not line:
        return None
    return json.loads(line)


def ask_permission(session_id):
    send(
        {
            "jsonrpc": "2.0",
            "id": "perm-1",
            "method": "session/request_permission",
            "params": {
                "sessionId": session_id,
                "toolCall": {"toolCallId": "call-1", "title": "Write file"},
                "options": [
                    {"optionId": "reject", "kind": "reject_once", "name": "Reject"},
                    {"optionId": "once", "kind": "allow_once", "name": "Allow once"},
                    {"optionId": "always", "kind": "allow_always", "name": "Always allow"},
                ],
            },
        }
    )
    while True:
        message = read_message()
        if message is None:
            return None
        if message.get("id") == "perm-1" and "method" not in message:
            return message


def handle_prompt(message, session_id):
    if os.environ.get("MOCK_ACP_HANG_PROMPT"):
        return
    delay = int(os.environ.get("MOCK_ACP_DELAY_MS", "0"))
    if delay:
        time.sleep(delay / 1000)
    if os.environ.get("MOCK_ACP_PERMISSION"):
        answer = ask_permission(session_id)
        if answer is None:
            return
        if "error" in answer:
            chunk(session_id, f"permission-error:{answer['error']['code']}")
        else:
            outcome = (answer.get("result") or {}).get("outcome") or {}
            chunk(session_id, f"permission:{outcome.get('optionId') or outcome.get('outcome')}")
    text = os.environ.get("MOCK_ACP_RESPONSE_TEXT", "Working on it.")
    if text:
        chunk(session_id, text)
    if os.environ.get("MOCK_ACP_PROMPT_ERROR"):
        reply_error(message["id"], -32000, "prompt failed")
        return
    reply(message["id"], {"stopReason": os.environ.get("MOCK_ACP_STOP_REASON", "end_turn")})


def main():
    session_counter = 0
    session_id = None
    while True:
        message = read_message()
        if message is None:
            return
        method = message.get("method")
        if "id" not in message:
            continue
        if method == "initialize":
            if os.environ.get("MOCK_ACP_FAIL_INIT"):
                reply_error(message["id"], -32000, "init refused")
                continue
            reply(
                message["id"],
                {"protocolVersion": 1, "agentCapabilities": {"loadSession": False}},
            )
        elif method == "session/new":
            session_counter += 1
            session_id = f"mock-session-{session_counter}"
            reply(message["id"], {"sessionId": session_id})
        elif method == "session/prompt":
            handle_prompt(message, message["params"]["sessionId"])
        elif method is not None:
            reply_error(message["id"], -32601, f"Method not found: {method}")


if __name__ == "__main__":
    main()
