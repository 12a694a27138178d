from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List

import pytest

from exceptions import DownloadError, OutputDirectoryError, ServerError
from fetcher import BatchIterator, FileFetchIterator, resolve_destination
from helpers import TEMPLATE, FakeClient, files
from schema import AppResultFile, FetchSummary


def make_file_iterator(client: FakeClient, names: List[str], output_dir: Path, **kwargs):
    output_dir.mkdir(parents=True, exist_ok=True)
    return FileFetchIterator(
        client, "ar-1", files(*names), output_dir, TEMPLATE, "ctrl", **kwargs
    )


def test_only_qualifying_files_are_downloaded(tmp_path: Path) -> None:
    client = FakeClient()
    iterator = make_file_iterator(client, [TEMPLATE, "x.bam", "ctrl.bam"], tmp_path)

    summary = asyncio.run(iterator.run())

    assert client.downloads() == ["x.bam"]
    assert summary.downloaded == [tmp_path / "x.bam"]
    assert summary.skipped == [TEMPLATE, "ctrl.bam"]
    assert (tmp_path / "x.bam").exists()


def test_downloads_follow_list_order_and_completion_fires_once(tmp_path: Path) -> None:
    names = ["a.bam", TEMPLATE, "a.bam.bai", "b.xlsx", "ctrl.bam", "b.bam"]
    completions: List[FetchSummary] = []
    client = FakeClient()
    iterator = make_file_iterator(client, names, tmp_path, on_complete=completions.append)

    asyncio.run(iterator.run())
    asyncio.run(iterator.run())

    # N=6 files, K=2 excluded
    assert client.downloads() == ["a.bam", "a.bam.bai", "b.xlsx", "b.bam"]
    assert iterator.index == len(names)
    assert iterator.done
    assert len(completions) == 1


def test_advance_moves_one_position_at_a_time(tmp_path: Path) -> None:
    client = FakeClient()
    iterator = make_file_iterator(client, ["a.bam", TEMPLATE], tmp_path)

    async def step_through() -> List[int]:
        return [await iterator.advance(), await iterator.advance()]

    assert asyncio.run(step_through()) == [1, 2]
    with pytest.raises(RuntimeError):
        asyncio.run(iterator.advance())


def test_empty_file_list_completes_immediately(tmp_path: Path) -> None:
    completions: List[FetchSummary] = []
    iterator = make_file_iterator(FakeClient(), [], tmp_path, on_complete=completions.append)

    summary = asyncio.run(iterator.run())

    assert summary.downloaded == []
    assert len(completions) == 1


def test_download_failure_stops_the_iterator(tmp_path: Path) -> None:
    client = FakeClient(fail_downloads={"f1"})
    iterator = make_file_iterator(client, ["a.bam", "b.bam", "c.bam"], tmp_path)

    with pytest.raises(DownloadError):
        asyncio.run(iterator.run())

    assert client.downloads() == ["a.bam", "b.bam"]
    assert iterator.index == 1


@pytest.mark.parametrize("name", ["../escape.bam", "nested/x.bam", ".."])
def test_file_names_with_path_components_are_refused(tmp_path: Path, name: str) -> None:
    client = FakeClient()
    iterator = make_file_iterator(client, [name], tmp_path)

    with pytest.raises(DownloadError, match="unsafe file name"):
        asyncio.run(iterator.run())
    assert client.downloads() == []


def test_batch_processes_app_results_in_order(tmp_path: Path) -> None:
    client = FakeClient(
        file_lists={
            "a": files("a.bam", TEMPLATE),
            "b": files("b.bam", "ctrl.bam"),
            "c": files("c.bam"),
        }
    )
    batch = BatchIterator(client, ["a", "b", "c"], tmp_path / "out", TEMPLATE, "ctrl")

    summary = asyncio.run(batch.run())

    assert client.calls == [
        ("list_files", "a"),
        ("download_file", "f0", "a.bam"),
        ("list_files", "b"),
        ("download_file", "f0", "b.bam"),
        ("list_files", "c"),
        ("download_file", "f0", "c.bam"),
    ]
    assert summary.app_results_processed == 3
    assert [path.name for path in summary.downloaded] == ["a.bam", "b.bam", "c.bam"]
    assert summary.skipped == [TEMPLATE, "ctrl.bam"]
    assert batch.done


def test_download_failure_on_one_app_result_stops_later_ones(tmp_path: Path) -> None:
    client = FakeClient(
        file_lists={
            "a": files("a.bam"),
            "b": files("b.xlsx", "b.bam"),
            "c": files("c.bam"),
        },
        fail_downloads={"f1"},
    )
    batch = BatchIterator(client, ["a", "b", "c"], tmp_path, TEMPLATE, "ctrl")

    with pytest.raises(DownloadError):
        asyncio.run(batch.run())

    assert client.downloads() == ["a.bam", "b.xlsx", "b.bam"]
    assert ("list_files", "c") not in client.calls
    assert batch.index == 1


def test_file_list_failure_is_fatal(tmp_path: Path) -> None:
    client = FakeClient(
        file_lists={"a": ServerError(500, "boom"), "b": files("b.bam")}
    )
    batch = BatchIterator(client, ["a", "b"], tmp_path, TEMPLATE, "ctrl")

    with pytest.raises(ServerError):
        asyncio.run(batch.run())

    assert client.calls == [("list_files", "a")]


def test_dry_run_lists_files_without_downloading(tmp_path: Path) -> None:
    client = FakeClient(file_lists={"a": files("a.bam", "ctrl.bam")})
    output_dir = tmp_path / "out"
    batch = BatchIterator(client, ["a"], output_dir, TEMPLATE, "ctrl", dry_run=True)

    summary = asyncio.run(batch.run())

    assert client.downloads() == []
    assert summary.planned == [output_dir / "a.bam"]
    assert summary.downloaded == []
    assert not output_dir.exists()


def test_resolve_destination_keeps_bare_names_inside_output_dir(tmp_path: Path) -> None:
    assert resolve_destination(tmp_path, "f1", "x.bam") == tmp_path / "x.bam"
    with pytest.raises(DownloadError, match="unsafe file name"):
        resolve_destination(tmp_path, "f1", "/etc/passwd")


def test_download_log_includes_size_when_known(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    client = FakeClient()
    iterator = FileFetchIterator(
        client,
        "ar-1",
        [AppResultFile(id="f0", name="x.bam", size=2048), AppResultFile(id="f1", name="y.bam")],
        tmp_path,
        TEMPLATE,
        "ctrl",
    )

    with caplog.at_level(logging.INFO, logger="fetcher"):
        asyncio.run(iterator.run())

    assert f"Download Success {tmp_path / 'x.bam'} (2048 bytes)" in caplog.text
    assert f"Download Success {tmp_path / 'y.bam'}" in caplog.text
    assert "y.bam (" not in caplog.text


def test_batch_summary_comes_from_completed_file_iterators(tmp_path: Path) -> None:
    (tmp_path / "out").mkdir()
    client = FakeClient(file_lists={"a": files("a.bam"), "b": files(TEMPLATE)})
    batch = BatchIterator(client, ["a", "b"], tmp_path / "out", TEMPLATE, "ctrl")

    async def first_step() -> FetchSummary:
        await batch.advance()
        return batch.summary

    summary = asyncio.run(first_step())

    assert summary.app_results_processed == 1
    assert [path.name for path in summary.downloaded] == ["a.bam"]


def test_unwritable_output_dir_stops_before_any_call(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    client = FakeClient(file_lists={"a": files("a.bam")})
    batch = BatchIterator(client, ["a"], blocker / "out", TEMPLATE, "ctrl")

    with pytest.raises(OutputDirectoryError, match="Could not create output directory"):
        asyncio.run(batch.run())
    assert client.calls == []
