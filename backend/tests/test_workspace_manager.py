import socket

import pytest

from autobuild.errors import WorkspaceFileNotFoundError
from autobuild.services.workspace_manager import WorkspaceManager
from autobuild.tools.exceptions import NoFreePortError, PathValidationError


@pytest.fixture
def manager(tmp_path):
    return WorkspaceManager(tmp_path / "workspaces")


@pytest.mark.asyncio
async def test_create_workspace_is_idempotent(manager, tmp_path):
    first = await manager.create_workspace("p1")
    (first / "keep.txt").write_text("kept", encoding="utf-8")

    second = await manager.create_workspace("p1")

    assert first == second == tmp_path / "workspaces" / "p1"
    assert (second / "keep.txt").read_text(encoding="utf-8") == "kept"
    assert await manager.workspace_exists("p1")


def test_workspace_path_rejects_unsafe_ids(manager):
    for project_id in ("", "..", "a/b", "a\\b"):
        with pytest.raises(PathValidationError):
            manager.workspace_path(project_id)


@pytest.mark.asyncio
async def test_list_files_orders_directories_first_and_skips_artifacts(manager):
    workspace = await manager.create_workspace("p1")
    (workspace / "src").mkdir()
    (workspace / "src" / "index.ts").write_text("export {}", encoding="utf-8")
    (workspace / "node_modules" / "react").mkdir(parents=True)
    (workspace / ".git").mkdir()
    (workspace / "README.md").write_text("# demo", encoding="utf-8")
    (workspace / "app").mkdir()
    (workspace / "package.json").write_text("{}", encoding="utf-8")

    entries = await manager.list_files(workspace)

    assert [entry.path for entry in entries] == [
        "app",
        "src",
        "src/index.ts",
        "README.md",
        "package.json",
    ]
    readme = next(entry for entry in entries if entry.name == "README.md")
    assert readme.size == len("# demo")
    assert readme.depth == 0


@pytest.mark.asyncio
async def test_list_files_respects_max_depth(manager):
    workspace = await manager.create_workspace("p1")
    (workspace / "a" / "b" / "c").mkdir(parents=True)
    (workspace / "a" / "b" / "c" / "deep.txt").write_text("x", encoding="utf-8")

    entries = await manager.list_files(workspace, max_depth=1)

    assert [entry.path for entry in entries] == ["a", "a/b"]


@pytest.mark.asyncio
async def test_iter_files_is_lazy(manager):
    workspace = await manager.create_workspace("p1")
    for name in ("one.txt", "two.txt"):
        (workspace / name).write_text(name, encoding="utf-8")

    walker = manager.iter_files(workspace)

    assert next(walker).name == "one.txt"


@pytest.mark.asyncio
async def test_list_files_of_missing_workspace_is_empty(manager, tmp_path):
    assert await manager.list_files(tmp_path / "nowhere") == []


@pytest.mark.asyncio
async def test_read_file_returns_content_size_and_extension(manager):
    workspace = await manager.create_workspace("p1")
    await manager.write_file(workspace, "src/app.tsx", "export default 1;")

    workspace_file = await manager.read_file(workspace, "src/app.tsx")

    assert workspace_file.path == "src/app.tsx"
    assert workspace_file.content == "export default 1;"
    assert workspace_file.size == len("export default 1;")
    assert workspace_file.extension == ".tsx"
    assert workspace_file.is_binary is False


@pytest.mark.asyncio
async def test_read_file_rejects_traversal_and_missing_files(manager, tmp_path):
    workspace = await manager.create_workspace("p1")
    (tmp_path / "workspaces" / "secret.txt").write_text("secret", encoding="utf-8")

    for path in ("../secret.txt", "src/../../secret.txt", "/etc/passwd", "missing.txt"):
        with pytest.raises(WorkspaceFileNotFoundError):
            await manager.read_file(workspace, path)


@pytest.mark.asyncio
async def test_read_binary_file_has_no_content(manager):
    workspace = await manager.create_workspace("p1")
    (workspace / "logo.png").write_bytes(b"\x89PNG\r\n")

    workspace_file = await manager.read_file(workspace, "logo.png")

    assert workspace_file.is_binary is True
    assert workspace_file.content is None
    assert workspace_file.size == 6


@pytest.mark.asyncio
async def test_workspace_size_skips_node_modules(manager):
    workspace = await manager.create_workspace("p1")
    (workspace / "index.js").write_bytes(b"12345")
    (workspace / "node_modules").mkdir()
    (workspace / "node_modules" / "big.js").write_bytes(b"x" * 1000)

    assert await manager.workspace_size(workspace) == 5


@pytest.mark.asyncio
async def test_delete_workspace_removes_directory(manager):
    workspace = await manager.create_workspace("p1")
    (workspace / "file.txt").write_text("x", encoding="utf-8")

    await manager.delete_workspace("p1")

    assert not workspace.exists()


def test_find_free_port_skips_ports_in_use():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind(("", 0))
        holder.listen()
        busy_port = holder.getsockname()[1]

        port = WorkspaceManager.find_free_port(busy_port, max_attempts=20)

    assert port != busy_port
    assert busy_port < port < busy_port + 20


def test_find_free_port_gives_up_after_bounded_attempts():
    with pytest.raises(NoFreePortError):
        WorkspaceManager.find_free_port(3100, max_attempts=0)
