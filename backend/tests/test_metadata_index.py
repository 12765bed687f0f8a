"""Tests for the metadata index — file records, folder tree, path cascade."""

import pytest
from sqlalchemy import select

from b2shelf.errors import FolderNotEmptyError, FolderNotFoundError, InvalidNameError, RecordNotFoundError
from b2shelf.models.folder import Folder


async def make_file(index, title="a", folder_id=None, account="account1", ts=111):
    return await index.create_file(
        title=title,
        file_name=f"{title}_{ts}.png",
        storage_key=f"files/{title}_{ts}.png",
        object_id=f"obj-{title}-{ts}",
        size=10,
        content_type="image/png",
        account=account,
        url=f"/files/{account}/{title}_{ts}.png",
        folder_id=folder_id,
        upload_timestamp=ts,
    )


async def assert_paths_consistent(db_session):
    folders = {f.id: f for f in (await db_session.execute(select(Folder))).scalars().all()}
    for folder in folders.values():
        await db_session.refresh(folder)
    for folder in folders.values():
        parent = folders.get(folder.parent_id)
        expected = f"{parent.path}/{folder.name}" if parent else folder.name
        assert folder.path == expected


class TestFiles:
    @pytest.mark.asyncio
    async def test_create_and_get(self, index):
        record = await make_file(index)
        assert record.id
        fetched = await index.require_file(record.id)
        assert fetched.storage_key == "files/a_111.png"
        assert fetched.created_at is not None

    @pytest.mark.asyncio
    async def test_require_missing(self, index):
        with pytest.raises(RecordNotFoundError):
            await index.require_file("nope")

    @pytest.mark.asyncio
    async def test_list_newest_first_and_filters(self, index):
        folder = await index.create_folder("F")
        await make_file(index, "old", ts=100)
        await make_file(index, "new", ts=300)
        await make_file(index, "inside", folder_id=folder.id, ts=200)
        await make_file(index, "other", account="account2", ts=400)

        assert [f.title for f in await index.list_files()] == ["other", "new", "inside", "old"]
        assert [f.title for f in await index.list_files(root_only=True, account="account1")] == ["new", "old"]
        assert [f.title for f in await index.list_files(folder_id=folder.id)] == ["inside"]
        assert [f.title for f in await index.list_files(limit=1)] == ["other"]

    @pytest.mark.asyncio
    async def test_update_storage(self, index):
        record = await make_file(index)
        await index.update_file_storage(
            record, title="b", storage_key="files/b_222.png", file_name="b_222.png",
            object_id="obj-b", url="/files/account1/b_222.png",
        )
        fetched = await index.require_file(record.id)
        assert fetched.title == "b"
        assert fetched.storage_key == "files/b_222.png"
        assert fetched.object_id == "obj-b"

    @pytest.mark.asyncio
    async def test_held_objects_stay_usable_after_move(self, index):
        folder = await index.create_folder("F")
        record = await make_file(index)

        await index.move_files([record.id], folder.id)

        # No re-fetch: the instances held by the caller reflect the UPDATE
        assert record.folder_id == folder.id
        assert record.updated_at is not None
        assert folder.path == "F"

    @pytest.mark.asyncio
    async def test_move_files(self, index):
        folder = await index.create_folder("F")
        a = await make_file(index, "a")
        b = await make_file(index, "b")

        moved = await index.move_files([a.id, b.id, "missing"], folder.id)

        assert moved == 2
        assert await index.count_files_in_folder(folder.id) == 2
        assert (await index.require_file(a.id)).folder_id == folder.id

    @pytest.mark.asyncio
    async def test_move_to_unknown_folder(self, index):
        a = await make_file(index)
        with pytest.raises(FolderNotFoundError):
            await index.move_files([a.id], "ghost")
        assert (await index.require_file(a.id)).folder_id is None

    @pytest.mark.asyncio
    async def test_delete(self, index):
        record = await make_file(index)
        await index.delete_file(record)
        assert await index.get_file(record.id) is None


class TestFolders:
    @pytest.mark.asyncio
    async def test_paths(self, index):
        top = await index.create_folder("Top", account="account2")
        child = await index.create_folder("Child", parent_id=top.id)
        assert top.path == "Top"
        assert top.account == "account2"
        assert child.path == "Top/Child"
        assert child.account == "account1"

    @pytest.mark.asyncio
    async def test_name_validation(self, index):
        with pytest.raises(InvalidNameError):
            await index.create_folder("   ")
        with pytest.raises(InvalidNameError):
            await index.create_folder("a/b")

    @pytest.mark.asyncio
    async def test_unknown_parent(self, index):
        with pytest.raises(FolderNotFoundError) as exc:
            await index.create_folder("x", parent_id="ghost")
        assert exc.value.message == "Parent folder not found"

    @pytest.mark.asyncio
    async def test_list(self, index):
        b = await index.create_folder("b")
        await index.create_folder("a")
        await index.create_folder("c", parent_id=b.id)
        assert [f.name for f in await index.list_folders(root_only=True)] == ["a", "b"]
        assert [f.name for f in await index.list_folders(parent_id=b.id)] == ["c"]
        assert [f.name for f in await index.list_folders()] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_rename_cascades_to_descendants(self, index, db_session):
        top = await index.create_folder("Top")
        mid = await index.create_folder("Mid", parent_id=top.id)
        leaf = await index.create_folder("Leaf", parent_id=mid.id)
        # Same prefix in an unrelated tree must stay untouched
        lookalike = await index.create_folder("Top Stuff")
        other = await index.create_folder("Inner", parent_id=lookalike.id)

        folder, updated = await index.rename_folder(top.id, "Renamed")

        assert folder.path == "Renamed"
        assert updated == 2
        assert (await index.require_folder(mid.id)).path == "Renamed/Mid"
        assert (await index.require_folder(leaf.id)).path == "Renamed/Mid/Leaf"
        assert (await index.require_folder(other.id)).path == "Top Stuff/Inner"
        await assert_paths_consistent(db_session)

    @pytest.mark.asyncio
    async def test_held_descendants_see_new_paths(self, index):
        top = await index.create_folder("Top")
        mid = await index.create_folder("Mid", parent_id=top.id)
        leaf = await index.create_folder("Leaf", parent_id=mid.id)

        await index.rename_folder(top.id, "Renamed")

        assert top.path == "Renamed"
        assert mid.path == "Renamed/Mid"
        assert leaf.path == "Renamed/Mid/Leaf"
        assert leaf.updated_at is not None

    @pytest.mark.asyncio
    async def test_rename_nested_folder(self, index, db_session):
        top = await index.create_folder("Top")
        mid = await index.create_folder("Mid", parent_id=top.id)
        leaf = await index.create_folder("Leaf", parent_id=mid.id)

        await index.rename_folder(mid.id, "Middle")

        assert (await index.require_folder(leaf.id)).path == "Top/Middle/Leaf"
        assert (await index.require_folder(top.id)).path == "Top"
        await assert_paths_consistent(db_session)

    @pytest.mark.asyncio
    async def test_rename_invalid_name_changes_nothing(self, index):
        top = await index.create_folder("Top")
        with pytest.raises(InvalidNameError):
            await index.rename_folder(top.id, " ")
        assert (await index.require_folder(top.id)).name == "Top"

    @pytest.mark.asyncio
    async def test_delete_empty(self, index):
        folder = await index.create_folder("F")
        await index.delete_folder(folder.id)
        assert await index.get_folder(folder.id) is None

    @pytest.mark.asyncio
    async def test_delete_with_files_fails_and_keeps_data(self, index):
        folder = await index.create_folder("F")
        record = await make_file(index, folder_id=folder.id)

        with pytest.raises(FolderNotEmptyError) as exc:
            await index.delete_folder(folder.id)

        assert exc.value.status_code == 400
        assert exc.value.message == "Cannot delete folder with files"
        assert await index.get_folder(folder.id) is not None
        assert (await index.require_file(record.id)).folder_id == folder.id

    @pytest.mark.asyncio
    async def test_delete_with_subfolders_fails(self, index):
        folder = await index.create_folder("F")
        child = await index.create_folder("G", parent_id=folder.id)
        with pytest.raises(FolderNotEmptyError) as exc:
            await index.delete_folder(folder.id)
        assert exc.value.message == "Cannot delete folder with subfolders"
        assert await index.get_folder(child.id) is not None

    @pytest.mark.asyncio
    async def test_delete_unknown(self, index):
        with pytest.raises(FolderNotFoundError):
            await index.delete_folder("ghost")

    @pytest.mark.asyncio
    async def test_breadcrumb(self, index):
        top = await index.create_folder("Top")
        mid = await index.create_folder("Mid", parent_id=top.id)
        assert await index.find_breadcrumb(mid.id) == [
            {"id": top.id, "name": "Top"},
            {"id": mid.id, "name": "Mid"},
        ]
        assert await index.find_breadcrumb(None) == []
        assert await index.find_breadcrumb("ghost") == []


@pytest.mark.asyncio
async def test_move_then_delete_folder(index):
    folder = await index.create_folder("F")
    record = await make_file(index, "x")

    await index.move_files([record.id], folder.id)
    with pytest.raises(FolderNotEmptyError):
        await index.delete_folder(folder.id)

    await index.move_files([record.id], None)
    await index.delete_folder(folder.id)
    assert await index.get_folder(folder.id) is None
    assert (await index.require_file(record.id)).folder_id is None
