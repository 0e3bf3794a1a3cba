import json

from aiterm.agent.parser import ResponseParser, normalize_message


def test_plain_text_reply_becomes_message_only_action() -> None:
    action = ResponseParser().parse("Sure, I will help!")

    assert action.message == "Sure, I will help!"
    assert action.kind is None
    assert action.request_accomplished is False
    assert action.exec_command == []


def test_full_json_reply_populates_every_field() -> None:
    raw = json.dumps(
        {
            "message": "Listing files",
            "exec_command": ["ls -la"],
            "request_accomplished": False,
            "exec_pane_seems_busy": True,
            "waiting_for_user_response": False,
            "no_comment": True,
        }
    )

    action = ResponseParser().parse(raw)

    assert action.message == "Listing files"
    assert action.exec_command == ["ls -la"]
    assert action.kind == "exec_command"
    assert action.exec_pane_seems_busy is True
    assert action.no_comment is True


def test_json_inside_fenced_block_is_found() -> None:
    raw = 'Here you go:\n```json\n{"message": "done", "request_accomplished": true}\n```'

    action = ResponseParser().parse(raw)

    assert action.message == "done"
    assert action.request_accomplished is True


def test_json_embedded_in_prose_is_found() -> None:
    raw = 'Thinking... {"send_keys": ["q"], "message": "quit pager"} trailing'

    action = ResponseParser().parse(raw)

    assert action.send_keys == ["q"]
    assert action.kind == "send_keys"


def test_unrelated_json_object_is_treated_as_text() -> None:
    raw = '{"foo": 1}'

    action = ResponseParser().parse(raw)

    assert action.message == raw
    assert action.kind is None


def test_wrong_types_are_coerced_to_defaults() -> None:
    raw = json.dumps(
        {
            "message": 42,
            "exec_command": "pwd",
            "send_keys": [1, "", "Enter"],
            "request_accomplished": "yes",
        }
    )

    action = ResponseParser().parse(raw)

    assert action.message == ""
    assert action.exec_command == []
    assert action.send_keys == ["Enter"]
    assert action.request_accomplished is False


def test_bare_string_command_is_not_an_action() -> None:
    action = ResponseParser().parse(json.dumps({"exec_command": "rm -rf build"}))

    assert action.exec_command == []
    assert action.kind is None


def test_multiple_payloads_keep_highest_priority_only() -> None:
    raw = json.dumps(
        {
            "exec_command": ["make"],
            "send_keys": ["C-c"],
            "paste_multiline_content": "line one\nline two",
        }
    )

    action = ResponseParser().parse(raw)

    assert action.exec_command == ["make"]
    assert action.send_keys == []
    assert action.paste_multiline_content == ""


def test_paste_content_is_kept_verbatim() -> None:
    content = "def f():\n\n\n\n    return 1\n"

    action = ResponseParser().parse(json.dumps({"paste_multiline_content": content}))

    assert action.paste_multiline_content == content
    assert action.kind == "paste_multiline"


def test_normalize_message_collapses_blank_line_runs() -> None:
    assert normalize_message("first\n\n\n\nsecond\n") == "first\nsecond"
    assert normalize_message("first\n\nsecond") == "first\n\nsecond"
