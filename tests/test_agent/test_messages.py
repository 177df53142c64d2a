import pytest

from turnkeeper.exceptions import HistoryError
from turnkeeper.messages import (
    History,
    ToolInvocationRequest,
    assistant_message,
    format_tool_result_for_display,
    format_tool_use_for_display,
    stringify_tool_result,
    tool_result_message,
    tool_signature,
    tool_use_message,
    user_message,
)


def test_tool_signature_edge_cases():
    assert tool_signature("", {"a": 1}) == "unknown:tool"
    assert tool_signature("viewFile", None) == "viewFile:empty-input"
    assert tool_signature("viewFile", {}) == "viewFile:empty-object"


def test_tool_signature_is_independent_of_key_order():
    first = tool_signature("editFile", {"filePath": "a", "content": "x"})
    second = tool_signature("editFile", {"content": "x", "filePath": "a"})

    assert first == second == 'editFile:{"content":"x","filePath":"a"}'


def test_stringify_tool_result_shapes():
    assert stringify_tool_result("plain") == ("plain", False)
    assert stringify_tool_result(["a.txt", "src/"]) == ("a.txt\nsrc/", False)
    assert stringify_tool_result(None) == ("[no result]", False)
    assert stringify_tool_result({"ok": True}) == ('{\n  "ok": true\n}', False)


def test_stringify_tool_result_reports_unserializable_value():
    text, is_error = stringify_tool_result({"value": object()})

    assert is_error is True
    assert text.startswith("[Could not serialize tool result")


def test_tool_use_message_contains_only_tool_use_blocks():
    requests = [
        ToolInvocationRequest("t1", "viewFile", {"filePath": "a"}).finalize(),
        ToolInvocationRequest("t2", "listDirectory", {"dirPath": "./"}).finalize(),
    ]

    wire = tool_use_message(requests).to_dict()

    assert wire == {
        "role": "assistant",
        "content": [
            {"type": "tool_use", "id": "t1", "name": "viewFile", "input": {"filePath": "a"}},
            {"type": "tool_use", "id": "t2", "name": "listDirectory", "input": {"dirPath": "./"}},
        ],
    }


def test_history_accepts_results_for_preceding_tool_uses():
    history = History()
    history.append(user_message("list files"))
    history.append(tool_use_message([ToolInvocationRequest("t1", "listDirectory", {}).finalize()]))
    history.append(tool_result_message("t1", "a.txt"))
    history.append(assistant_message("There is one file."))

    assert [message.role for message in history] == ["user", "assistant", "user", "assistant"]
    assert history.to_wire()[2] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "a.txt", "is_error": False}],
    }


def test_history_accepts_several_result_messages_for_one_tool_use_message():
    history = History()
    history.append(user_message("read both"))
    history.append(tool_use_message([
        ToolInvocationRequest("t1", "viewFile", {"filePath": "a"}).finalize(),
        ToolInvocationRequest("t2", "viewFile", {"filePath": "b"}).finalize(),
    ]))
    history.append(tool_result_message("t2", "B"))
    history.append(tool_result_message("t1", "A"))

    assert len(history) == 4


def test_history_rejects_orphan_tool_result():
    history = History()
    history.append(user_message("hello"))

    with pytest.raises(HistoryError):
        history.append(tool_result_message("t9", "nope"))

    assert len(history) == 1


def test_history_rejects_result_for_older_tool_use():
    history = History()
    history.append(user_message("one"))
    history.append(tool_use_message([ToolInvocationRequest("t1", "listDirectory", {}).finalize()]))
    history.append(tool_result_message("t1", "ok"))
    history.append(assistant_message("done"))
    history.append(user_message("two"))

    with pytest.raises(HistoryError):
        history.append(tool_result_message("t1", "again"))


def test_display_helpers():
    request = ToolInvocationRequest("t1", "viewFile", {"filePath": "a.txt"})

    assert format_tool_use_for_display(request) == "viewFile(filePath='a.txt')"
    shown = format_tool_result_for_display(request, "x" * 600, False)
    assert shown.startswith("viewFile [OK]\n")
    assert shown.endswith("... [100 more chars]")
    assert format_tool_result_for_display(request, "boom", True) == "viewFile [ERROR]\nboom"


def test_finalized_request_arguments_cannot_be_edited_in_place():
    request = ToolInvocationRequest("t1", "editFile", {"filePath": "a.txt", "content": "x"}).finalize()
    signature = request.signature

    request.arguments["filePath"] = "/etc/passwd"

    assert request.arguments == {"filePath": "a.txt", "content": "x"}
    assert request.signature == signature
    assert request.to_block().input == {"filePath": "a.txt", "content": "x"}


def test_open_request_arguments_are_live_while_assembling():
    request = ToolInvocationRequest("t1", "viewFile")

    request.arguments = {"filePath": "a.txt"}

    assert request.arguments == {"filePath": "a.txt"}
    assert request.finalized is False
