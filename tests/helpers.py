from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from config import Settings
from exceptions import DownloadError
from schema import AppResult, AppResultFile

TEMPLATE = "SMP2_CRUK_V2_03.15.xlsx"


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "api_server": "https://api.example.test/",
        "api_version": "v1pre3",
        "access_token": "token-123",
        "num_pairs": 2,
        "project_id": "proj-1",
        "negative_control": "ctrl",
        "polling_interval": 10.0,
        "timeout": 60.0,
        "template": TEMPLATE,
        "output_dir": tmp_path / "out",
    }
    values.update(overrides)
    return Settings(**values)


def app_results(*pairs: tuple[str, str]) -> List[AppResult]:
    return [AppResult(id=app_result_id, status=status) for app_result_id, status in pairs]


def files(*names: str) -> List[AppResultFile]:
    return [AppResultFile(id=f"f{index}", name=name) for index, name in enumerate(names)]


class FakeClient:
    """Records every call and serves canned responses in place of BaseSpaceClient."""

    def __init__(
        self,
        polls: Optional[List[object]] = None,
        file_lists: Optional[Dict[str, object]] = None,
        fail_downloads: Optional[set[str]] = None,
    ) -> None:
        self.polls = list(polls or [])
        self.file_lists = file_lists or {}
        self.fail_downloads = fail_downloads or set()
        self.calls: List[tuple] = []

    async def list_app_results(self, project_id: str) -> List[AppResult]:
        self.calls.append(("list_app_results", project_id))
        result = self.polls.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def list_files(self, app_result_id: str) -> List[AppResultFile]:
        self.calls.append(("list_files", app_result_id))
        result = self.file_lists[app_result_id]
        if isinstance(result, Exception):
            raise result
        return result

    async def download_file(self, file_id: str, destination: Path) -> Path:
        self.calls.append(("download_file", file_id, destination.name))
        if file_id in self.fail_downloads:
            raise DownloadError(file_id, destination, "connection reset")
        destination.write_bytes(b"data")
        return destination

    def downloads(self) -> List[str]:
        return [call[2] for call in self.calls if call[0] == "download_file"]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def client_factory(client: FakeClient):
    """Stand-in for BaseSpaceClient whose from_settings yields ``client``."""

    class FakeContext:
        async def __aenter__(self) -> FakeClient:
            return client

        async def __aexit__(self, *exc_info) -> None:
            return None

    class Factory:
        @staticmethod
        def from_settings(settings) -> FakeContext:
            return FakeContext()

    return Factory
