import pytest

from autobuild.errors import ProjectNotFoundError
from autobuild.models.build import BuildStatus, DeployTarget, ProjectType
from autobuild.repositories.build_repository import BuildRepository


async def _create(repo, project_id, tmp_path, **kwargs):
    return await repo.create_project(
        project_id=project_id,
        description="todo app",
        project_type=ProjectType.WEB_APP,
        workspace_path=tmp_path / project_id,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_project_starts_queued(db_session, tmp_path):
    repo = BuildRepository(db_session)

    project = await _create(
        repo,
        "p1",
        tmp_path,
        preferred_stack="Next.js",
        deploy_target=DeployTarget.VERCEL,
        metadata={"source": "test"},
    )

    assert project.status == BuildStatus.QUEUED
    assert project.workspace_path == tmp_path / "p1"
    assert project.deploy_target == DeployTarget.VERCEL
    assert project.metadata == {"source": "test"}

    saved = await repo.get_project("p1")
    assert saved is not None
    assert saved.preferred_stack == "Next.js"


@pytest.mark.asyncio
async def test_get_unknown_project_returns_none(db_session):
    repo = BuildRepository(db_session)

    assert await repo.get_project("missing") is None


@pytest.mark.asyncio
async def test_update_status_applies_patch_and_refreshes_timestamp(db_session, tmp_path):
    repo = BuildRepository(db_session)
    created = await _create(repo, "p1", tmp_path)

    updated = await repo.update_project_status("p1", BuildStatus.COMPLETE, local_port=3100)

    assert updated.status == BuildStatus.COMPLETE
    assert updated.local_port == 3100
    assert updated.updated_at >= created.updated_at


@pytest.mark.asyncio
async def test_update_rejects_fields_outside_whitelist(db_session, tmp_path):
    repo = BuildRepository(db_session)
    await _create(repo, "p1", tmp_path)

    with pytest.raises(ValueError):
        await repo.update_project("p1", description="rewritten")


@pytest.mark.asyncio
async def test_update_unknown_project_raises(db_session):
    repo = BuildRepository(db_session)

    with pytest.raises(ProjectNotFoundError):
        await repo.update_project_status("missing", BuildStatus.FAILED)


@pytest.mark.asyncio
async def test_logs_are_returned_in_insertion_order(db_session, tmp_path):
    repo = BuildRepository(db_session)
    await _create(repo, "p1", tmp_path)

    await repo.append_log("p1", BuildStatus.QUEUED, "Build queued")
    await repo.append_log("p1", BuildStatus.PLANNING, "Planning")
    await repo.append_log("p1", BuildStatus.BUILDING, "Building")

    logs = await repo.list_logs("p1")

    assert [log.phase for log in logs] == [
        BuildStatus.QUEUED,
        BuildStatus.PLANNING,
        BuildStatus.BUILDING,
    ]
    assert [log.id for log in logs] == sorted(log.id for log in logs)


@pytest.mark.asyncio
async def test_list_projects_newest_first(db_session, tmp_path):
    repo = BuildRepository(db_session)
    await _create(repo, "a", tmp_path)
    await _create(repo, "b", tmp_path)

    projects = await repo.list_projects()

    assert [project.id for project in projects] == ["b", "a"]
    assert [project.id for project in await repo.list_projects(limit=1)] == ["b"]


@pytest.mark.asyncio
async def test_delete_project_removes_logs(db_session, tmp_path):
    repo = BuildRepository(db_session)
    await _create(repo, "p1", tmp_path)
    await repo.append_log("p1", BuildStatus.QUEUED, "Build queued")

    assert await repo.delete_project("p1") is True
    assert await repo.get_project("p1") is None
    assert await repo.list_logs("p1") == []
    assert await repo.delete_project("p1") is False
