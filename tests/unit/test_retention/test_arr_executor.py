# tests/unit/test_retention/test_arr_executor.py
"""Unit tests for the Sonarr/Radarr/Overseerr deletion executor."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from prunarr.services.resilience import ExecutionTimeoutError
from prunarr.services.retention.arr_executor import ArrDeletionExecutor, ArrFile
from prunarr.services.retention.errors import ExecutionError
from prunarr.services.retention.executor import DeletionStage, FileStatus, ProgressChannel
from prunarr.services.retention.types import DeletionAction


@pytest.fixture
def radarr():
    client = AsyncMock()
    client.list_movie_files.return_value = [
        ArrFile(id=11, path="/movies/Heat (1995)/Heat.mkv", size=3000),
        ArrFile(id=12, path="/movies/Heat (1995)/Heat.en.srt", size=100),
    ]
    return client


@pytest.fixture
def sonarr():
    client = AsyncMock()
    client.list_episode_files.return_value = [ArrFile(id=21, path="/tv/Show/S01E01.mkv", size=500)]
    return client


@pytest.fixture
def overseerr():
    client = AsyncMock()
    client.reset_media.return_value = True
    return client


async def drain(channel):
    events = []
    while not channel._queue.empty():
        events.append(await channel.get())
    return events


class TestArrDeletionExecutor:
    """Tests for ArrDeletionExecutor.execute_stream()."""

    @pytest.mark.asyncio
    async def test_unmonitor_and_delete(self, radarr, make_item):
        executor = ArrDeletionExecutor(radarr=radarr)
        item = make_item(radarr_id=7)

        result = await executor.execute(item, DeletionAction.UNMONITOR_AND_DELETE)

        assert result.success is True
        assert result.file_size_freed == 3100
        radarr.unmonitor_movie.assert_awaited_once_with(7)
        assert radarr.delete_movie_file.await_count == 2

    @pytest.mark.asyncio
    async def test_unmonitor_only_keeps_files(self, radarr, make_item):
        result = await ArrDeletionExecutor(radarr=radarr).execute(make_item(), DeletionAction.UNMONITOR_ONLY)

        assert result.success is True
        assert result.file_size_freed == 0
        radarr.delete_movie_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_files_only_keeps_monitoring(self, radarr, make_item):
        await ArrDeletionExecutor(radarr=radarr).execute(make_item(), DeletionAction.DELETE_FILES_ONLY)
        radarr.unmonitor_movie.assert_not_awaited()
        assert radarr.delete_movie_file.await_count == 2

    @pytest.mark.asyncio
    async def test_show_goes_through_sonarr(self, sonarr, radarr, make_item):
        item = make_item(type="show", sonarr_id=5, radarr_id=None)

        result = await ArrDeletionExecutor(sonarr=sonarr, radarr=radarr).execute(item, DeletionAction.DELETE_FILES_ONLY)

        sonarr.delete_episode_file.assert_awaited_once_with(21)
        radarr.list_movie_files.assert_not_awaited()
        assert result.file_size_freed == 500

    @pytest.mark.asyncio
    async def test_partial_file_failure_still_succeeds(self, radarr, make_item):
        """Freed bytes count only the files actually removed."""
        radarr.delete_movie_file.side_effect = [None, ConnectionError("refused")]

        result = await ArrDeletionExecutor(radarr=radarr).execute(make_item(), DeletionAction.DELETE_FILES_ONLY)

        assert result.success is True
        assert result.files_failed == 1
        assert result.file_size_freed == 3000

    @pytest.mark.asyncio
    async def test_all_files_failed(self, radarr, overseerr, make_item):
        radarr.delete_movie_file.side_effect = ConnectionError("refused")
        executor = ArrDeletionExecutor(radarr=radarr, overseerr=overseerr)

        result = await executor.execute(make_item(), DeletionAction.DELETE_FILES_ONLY, reset_external_request=True)

        assert result.success is False
        assert result.files_failed == 2
        assert result.file_size_freed == 0
        assert result.error == "All 2 files failed to delete"
        overseerr.reset_media.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_full_removal(self, radarr, make_item):
        item = make_item(radarr_id=7, file_size=9000)

        result = await ArrDeletionExecutor(radarr=radarr).execute(item, DeletionAction.FULL_REMOVAL)

        radarr.remove_movie.assert_awaited_once_with(7, delete_files=True)
        assert result.file_size_freed == 9000

    @pytest.mark.asyncio
    async def test_slow_file_call_times_out_alone(self, radarr, make_item):
        """A stuck file deletion fails that file only; the rest of the item proceeds."""

        async def delete_movie_file(file_id):
            if file_id == 11:
                await asyncio.sleep(1)

        radarr.delete_movie_file.side_effect = delete_movie_file
        executor = ArrDeletionExecutor(radarr=radarr, call_timeout_seconds=0.05)

        result = await executor.execute(make_item(), DeletionAction.DELETE_FILES_ONLY)

        assert result.success is True
        assert result.files_failed == 1
        assert result.file_size_freed == 100

    @pytest.mark.asyncio
    async def test_unmonitor_timeout_raises(self, radarr, make_item):
        async def unmonitor_movie(movie_id):
            await asyncio.sleep(1)

        radarr.unmonitor_movie.side_effect = unmonitor_movie
        executor = ArrDeletionExecutor(radarr=radarr, call_timeout_seconds=0.05)

        with pytest.raises(ExecutionTimeoutError, match="Unmonitoring 'Test Movie' in Radarr timed out"):
            await executor.execute(make_item(), DeletionAction.UNMONITOR_ONLY)

    @pytest.mark.asyncio
    async def test_no_target_raises(self, make_item):
        with pytest.raises(ExecutionError):
            await ArrDeletionExecutor().execute(make_item(), DeletionAction.UNMONITOR_ONLY)

    @pytest.mark.asyncio
    async def test_unmonitor_failure_propagates(self, radarr, make_item):
        radarr.unmonitor_movie.side_effect = ConnectionError("Radarr unreachable")
        with pytest.raises(ConnectionError):
            await ArrDeletionExecutor(radarr=radarr).execute(make_item(), DeletionAction.UNMONITOR_AND_DELETE)


class TestOverseerrReset:
    """The external request reset never fails a deletion."""

    @pytest.mark.asyncio
    async def test_reset_movie(self, radarr, overseerr, make_item):
        executor = ArrDeletionExecutor(radarr=radarr, overseerr=overseerr)

        result = await executor.execute(
            make_item(tmdb_id=550), DeletionAction.UNMONITOR_ONLY, reset_external_request=True
        )

        assert result.overseerr_reset is True
        overseerr.reset_media.assert_awaited_once_with(550, "movie")

    @pytest.mark.asyncio
    async def test_reset_show_uses_tv(self, sonarr, overseerr, make_item):
        item = make_item(type="show", sonarr_id=5, radarr_id=None, tmdb_id=1399)
        executor = ArrDeletionExecutor(sonarr=sonarr, overseerr=overseerr)

        await executor.execute(item, DeletionAction.UNMONITOR_ONLY, reset_external_request=True)

        overseerr.reset_media.assert_awaited_once_with(1399, "tv")

    @pytest.mark.asyncio
    async def test_reset_retried_then_reported(self, radarr, overseerr, make_item):
        """Persistent Overseerr failure is retried, then recorded without failing the deletion."""
        overseerr.reset_media.side_effect = ConnectionError("Overseerr down")
        executor = ArrDeletionExecutor(radarr=radarr, overseerr=overseerr, reset_attempts=3, reset_min_wait=0)

        result = await executor.execute(make_item(), DeletionAction.DELETE_FILES_ONLY, reset_external_request=True)

        assert result.success is True
        assert result.overseerr_reset is False
        assert result.overseerr_error == "Overseerr down"
        assert overseerr.reset_media.await_count == 3

    @pytest.mark.asyncio
    async def test_reset_recovers_on_retry(self, radarr, overseerr, make_item):
        overseerr.reset_media.side_effect = [ConnectionError("blip"), True]
        executor = ArrDeletionExecutor(radarr=radarr, overseerr=overseerr, reset_min_wait=0)

        result = await executor.execute(make_item(), DeletionAction.UNMONITOR_ONLY, reset_external_request=True)

        assert result.overseerr_reset is True
        assert result.overseerr_error is None

    @pytest.mark.asyncio
    async def test_no_overseerr_client(self, radarr, make_item):
        result = await ArrDeletionExecutor(radarr=radarr).execute(
            make_item(), DeletionAction.UNMONITOR_ONLY, reset_external_request=True
        )
        assert result.success is True
        assert result.overseerr_reset is False
        assert result.overseerr_error == "Overseerr not configured"

    @pytest.mark.asyncio
    async def test_missing_tmdb_id(self, radarr, overseerr, make_item):
        executor = ArrDeletionExecutor(radarr=radarr, overseerr=overseerr)
        result = await executor.execute(
            make_item(tmdb_id=None), DeletionAction.UNMONITOR_ONLY, reset_external_request=True
        )
        assert result.overseerr_error == "Item has no TMDB id"
        overseerr.reset_media.assert_not_awaited()


class TestProgressReporting:
    @pytest.mark.asyncio
    async def test_stream_events(self, radarr, overseerr, make_item):
        channel = ProgressChannel()
        executor = ArrDeletionExecutor(radarr=radarr, overseerr=overseerr)

        await executor.execute_stream(
            make_item(), DeletionAction.UNMONITOR_AND_DELETE, channel, reset_external_request=True
        )
        events = await drain(channel)

        assert [e.stage for e in events if not e.file_progress] == [
            DeletionStage.UNMONITORING,
            DeletionStage.DELETING_FILES,
            DeletionStage.RESETTING_OVERSEERR,
        ]
        files = [e.file_progress for e in events if e.file_progress]
        assert [(p.current, p.total, p.file_name, p.status) for p in files] == [
            (1, 2, "Heat.mkv", FileStatus.DELETING),
            (1, 2, "Heat.mkv", FileStatus.DELETED),
            (2, 2, "Heat.en.srt", FileStatus.DELETING),
            (2, 2, "Heat.en.srt", FileStatus.DELETED),
        ]

    @pytest.mark.asyncio
    async def test_failed_file_reported(self, radarr, make_item):
        radarr.delete_movie_file.side_effect = [ConnectionError("refused"), None]
        channel = ProgressChannel()

        await ArrDeletionExecutor(radarr=radarr).execute_stream(make_item(), DeletionAction.DELETE_FILES_ONLY, channel)
        events = await drain(channel)

        statuses = [e.file_progress.status for e in events if e.file_progress]
        assert statuses == [FileStatus.DELETING, FileStatus.FAILED, FileStatus.DELETING, FileStatus.DELETED]
