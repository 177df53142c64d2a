import asyncio

import pytest

from turnkeeper.permissions import PermissionManager, describe_request, permission_key


def test_permission_key_scopes_edits_by_file():
    assert permission_key("editFile", {"filePath": "a.txt", "content": "x"}) == "editFile:a.txt"
    assert permission_key("viewFile", {"filePath": "a.txt"}) == "viewFile"


def test_describe_request_names_target():
    assert describe_request("listDirectory", {"dirPath": "src"}) == 'listDirectory for directory "src"'
    assert describe_request("custom", {}) == "custom"


@pytest.mark.asyncio
async def test_approval_is_remembered():
    asked: list[str] = []

    async def approve(tool_name, arguments):
        asked.append(tool_name)
        return True

    manager = PermissionManager(prompt=approve)

    assert await manager.request("viewFile", {"filePath": "a.txt"}) is True
    assert await manager.request("viewFile", {"filePath": "b.txt"}) is True
    assert asked == ["viewFile"]
    assert manager.has_permission("viewFile", {}) is True


@pytest.mark.asyncio
async def test_edit_approval_covers_only_that_file():
    asked: list[dict] = []

    async def approve(tool_name, arguments):
        asked.append(arguments)
        return True

    manager = PermissionManager(prompt=approve)

    await manager.request("editFile", {"filePath": "a.txt", "content": "1"})
    await manager.request("editFile", {"filePath": "a.txt", "content": "2"})
    await manager.request("editFile", {"filePath": "b.txt", "content": "3"})

    assert [arguments["filePath"] for arguments in asked] == ["a.txt", "b.txt"]


@pytest.mark.asyncio
async def test_denial_is_not_remembered():
    answers = iter([False, True])

    def prompt(tool_name, arguments):
        return next(answers)

    manager = PermissionManager(prompt=prompt)

    assert await manager.request("listDirectory", {"dirPath": "./"}) is False
    assert await manager.request("listDirectory", {"dirPath": "./"}) is True


@pytest.mark.asyncio
async def test_missing_prompt_denies():
    assert await PermissionManager().request("viewFile", {"filePath": "a"}) is False


@pytest.mark.asyncio
async def test_auto_approve_skips_prompt():
    async def fail(tool_name, arguments):
        raise AssertionError("should not prompt")

    manager = PermissionManager(prompt=fail, auto_approve=["viewFile"])

    assert await manager.request("viewFile", {"filePath": "a"}) is True


@pytest.mark.asyncio
async def test_concurrent_requests_prompt_once():
    asked: list[str] = []
    active = 0
    peak = 0

    async def approve(tool_name, arguments):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        asked.append(tool_name)
        await asyncio.sleep(0.01)
        active -= 1
        return True

    manager = PermissionManager(prompt=approve)

    results = await asyncio.gather(*[manager.request("viewFile", {"filePath": f"{i}.txt"}) for i in range(5)])

    assert results == [True] * 5
    assert asked == ["viewFile"]
    assert peak == 1


@pytest.mark.asyncio
async def test_reset_forgets_approvals():
    async def approve(tool_name, arguments):
        return True

    manager = PermissionManager(prompt=approve)
    await manager.request("viewFile", {})

    manager.reset()

    assert manager.has_permission("viewFile", {}) is False
