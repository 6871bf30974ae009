from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from video_recipe.app.domain.errors import BackendUnavailable, ConfigurationError, RepositoryError, StorageError
from video_recipe.app.domain.models import JobOutcome, QueueStatus
from video_recipe.app.services.retention import CleanupReport
from workers.pipeline.config import WorkerConfig
from workers.pipeline.main import EXIT_CONFIG, EXIT_FAILED, EXIT_OK, PipelineWorker, main


class VideoPipelineStub:
    def __init__(self) -> None:
        self.submitted: list[tuple[str, Path]] = []
        self.failing_names: set[str] = set()
        self.raise_for_names: set[str] = set()

    def submit(self, owner_id: str, video: Path, thumbnail: bytes | None = None) -> JobOutcome:
        self.submitted.append((owner_id, video))
        recipe_id = f"recipe-{len(self.submitted)}"
        if video.name in self.raise_for_names:
            raise RepositoryError("create recipe", "row store down")
        if video.name in self.failing_names:
            return JobOutcome(recipe_id=recipe_id, status=QueueStatus.FAILED, error="All 3 frame descriptions failed")
        return JobOutcome(recipe_id=recipe_id, status=QueueStatus.COMPLETED, frames_total=3)


def create_test_config() -> WorkerConfig:
    return WorkerConfig(
        worker_id="test-worker",
        default_owner_id="owner-1",
        stop_on_failure=False,
        supabase_url="https://test.supabase.co",
        supabase_key="test-key",
        ai_backend="local",
        openai_api_key="",
        storage_provider="supabase",
        r2_account_id="",
        r2_access_key_id="",
        r2_secret_access_key="",
        r2_bucket_name="",
    )


def create_videos(tmp_path: Path, *names: str) -> list[Path]:
    videos = []
    for name in names:
        path = tmp_path / name
        path.write_bytes(b"video")
        videos.append(path)
    return videos


def create_worker(config: WorkerConfig | None = None) -> tuple[PipelineWorker, VideoPipelineStub]:
    pipeline = VideoPipelineStub()
    worker = PipelineWorker(config=config or create_test_config(), pipeline=pipeline)
    worker.running = True
    return worker, pipeline


class TestPipelineWorkerConfiguration:
    def test_configuration_validation_passes(self) -> None:
        assert create_test_config().validate() == []

    def test_configuration_validation_missing_supabase_url(self) -> None:
        config = create_test_config()
        config.supabase_url = ""
        assert "SUPABASE_URL is required" in config.validate()

    def test_remote_backend_requires_api_key(self) -> None:
        config = create_test_config()
        config.ai_backend = "remote"
        assert "OPENAI_API_KEY is required when AI_BACKEND=remote" in config.validate()

    def test_unknown_backend(self) -> None:
        config = create_test_config()
        config.ai_backend = "cloud"
        errors = config.validate()
        assert len(errors) == 1
        assert "AI_BACKEND" in errors[0]

    def test_r2_requires_credentials(self) -> None:
        config = create_test_config()
        config.storage_provider = "r2"
        config.r2_account_id = "account"
        errors = config.validate()
        assert "R2_BUCKET_NAME is required" in errors
        assert "R2_ACCOUNT_ID is required" not in errors

    def test_start_refuses_invalid_configuration(self, tmp_path: Path) -> None:
        config = create_test_config()
        config.supabase_key = ""
        worker, pipeline = create_worker(config)

        with pytest.raises(ConfigurationError):
            worker.start(create_videos(tmp_path, "a.mp4"), "owner-1")

        assert pipeline.submitted == []


class TestPipelineWorkerRun:
    def test_all_videos_completed(self, tmp_path: Path) -> None:
        worker, pipeline = create_worker()

        with patch.object(PipelineWorker, "_setup_signal_handlers"):
            exit_code = worker.start(create_videos(tmp_path, "a.mp4", "b.mp4"), "owner-1")

        assert exit_code == EXIT_OK
        assert [owner for owner, _ in pipeline.submitted] == ["owner-1", "owner-1"]

    def test_failed_video_sets_exit_code(self, tmp_path: Path) -> None:
        worker, pipeline = create_worker()
        pipeline.failing_names.add("a.mp4")

        worker._run(create_videos(tmp_path, "a.mp4", "b.mp4"), "owner-1")

        assert len(pipeline.submitted) == 2
        assert worker.exit_code() == EXIT_FAILED

    def test_stop_on_failure(self, tmp_path: Path) -> None:
        config = create_test_config()
        config.stop_on_failure = True
        worker, pipeline = create_worker(config)
        pipeline.failing_names.add("a.mp4")

        worker._run(create_videos(tmp_path, "a.mp4", "b.mp4"), "owner-1")

        assert len(pipeline.submitted) == 1

    def test_missing_video_is_skipped(self, tmp_path: Path) -> None:
        worker, pipeline = create_worker()
        videos = [tmp_path / "missing.mp4", *create_videos(tmp_path, "b.mp4")]

        worker._run(videos, "owner-1")

        assert [video.name for _, video in pipeline.submitted] == ["b.mp4"]
        assert worker.exit_code() == EXIT_OK

    def test_job_creation_error_is_contained(self, tmp_path: Path) -> None:
        worker, pipeline = create_worker()
        pipeline.raise_for_names.add("a.mp4")

        worker._run(create_videos(tmp_path, "a.mp4", "b.mp4"), "owner-1")

        assert len(worker.outcomes) == 1
        assert worker.current_video is None

    def test_no_outcomes_is_failure(self) -> None:
        worker, _ = create_worker()
        assert worker.exit_code() == EXIT_FAILED

    def test_shutdown_signal_stops_before_next_video(self, tmp_path: Path) -> None:
        worker, pipeline = create_worker()
        worker._handle_shutdown_signal(15, None)

        worker._run(create_videos(tmp_path, "a.mp4"), "owner-1")

        assert pipeline.submitted == []
        assert worker.running is False


class TestMain:
    def test_owner_is_required(self, tmp_path: Path) -> None:
        config = create_test_config()
        config.default_owner_id = ""

        with patch("workers.pipeline.main.get_config", return_value=config):
            assert main([str(tmp_path / "a.mp4")]) == EXIT_CONFIG

    def test_invalid_configuration(self, tmp_path: Path) -> None:
        config = create_test_config()
        config.supabase_url = ""

        with patch("workers.pipeline.main.get_config", return_value=config), patch(
            "workers.pipeline.main.create_default_dependencies"
        ) as create_deps:
            assert main([str(tmp_path / "a.mp4")]) == EXIT_CONFIG

        create_deps.assert_not_called()

    def test_unreachable_backend(self, tmp_path: Path) -> None:
        with patch("workers.pipeline.main.get_config", return_value=create_test_config()), patch(
            "workers.pipeline.main.create_default_dependencies",
            side_effect=BackendUnavailable("ollama", "connection refused"),
        ):
            assert main([str(tmp_path / "a.mp4")]) == EXIT_FAILED

    def test_processes_videos_for_owner_flag(self, tmp_path: Path) -> None:
        pipeline = VideoPipelineStub()
        videos = create_videos(tmp_path, "a.mp4")

        with patch("workers.pipeline.main.get_config", return_value=create_test_config()), patch(
            "workers.pipeline.main.create_default_dependencies", return_value=pipeline
        ), patch.object(PipelineWorker, "_setup_signal_handlers"):
            exit_code = main([str(videos[0]), "--owner", "owner-9"])

        assert exit_code == EXIT_OK
        assert pipeline.submitted == [("owner-9", videos[0])]

    def test_requires_videos_without_cleanup(self) -> None:
        with pytest.raises(SystemExit):
            main([])


def create_test_settings(retention_days: int | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        VIDEOS_BUCKET="videos",
        THUMBNAILS_BUCKET="thumbnails",
        VIDEO_RETENTION_DAYS=retention_days,
    )


class TestCleanupExpired:
    def test_runs_cleanup_without_owner(self) -> None:
        config = create_test_config()
        config.default_owner_id = ""
        storage = MagicMock()
        report = CleanupReport(deleted_videos=["u1/r1.mp4"], deleted_thumbnails=["u1/r1.jpg"])

        with patch("workers.pipeline.main.get_config", return_value=config), patch(
            "workers.pipeline.main.get_settings", return_value=create_test_settings()
        ), patch("workers.pipeline.main.create_cleanup_storage", return_value=storage), patch(
            "workers.pipeline.main.cleanup_expired_videos", return_value=report
        ) as cleanup:
            assert main(["--cleanup-expired"]) == EXIT_OK

        cleanup.assert_called_once_with(storage, videos_bucket="videos", thumbnails_bucket="thumbnails", max_age=None)

    def test_retention_days_become_max_age(self) -> None:
        with patch("workers.pipeline.main.get_config", return_value=create_test_config()), patch(
            "workers.pipeline.main.get_settings", return_value=create_test_settings(retention_days=30)
        ), patch("workers.pipeline.main.create_cleanup_storage"), patch(
            "workers.pipeline.main.cleanup_expired_videos", return_value=CleanupReport()
        ) as cleanup:
            main(["--cleanup-expired"])

        assert cleanup.call_args.kwargs["max_age"].days == 30

    def test_storage_failure(self) -> None:
        with patch("workers.pipeline.main.get_config", return_value=create_test_config()), patch(
            "workers.pipeline.main.get_settings", return_value=create_test_settings()
        ), patch("workers.pipeline.main.create_cleanup_storage"), patch(
            "workers.pipeline.main.cleanup_expired_videos", side_effect=StorageError("list failed")
        ):
            assert main(["--cleanup-expired"]) == EXIT_FAILED

    def test_skipped_objects_fail_the_run(self) -> None:
        with patch("workers.pipeline.main.get_config", return_value=create_test_config()), patch(
            "workers.pipeline.main.get_settings", return_value=create_test_settings()
        ), patch("workers.pipeline.main.create_cleanup_storage"), patch(
            "workers.pipeline.main.cleanup_expired_videos", return_value=CleanupReport(skipped=["u1/r1.mp4"])
        ):
            assert main(["--cleanup-expired"]) == EXIT_FAILED

    def test_invalid_configuration(self) -> None:
        config = create_test_config()
        config.supabase_key = ""

        with patch("workers.pipeline.main.get_config", return_value=config), patch(
            "workers.pipeline.main.cleanup_expired_videos"
        ) as cleanup:
            assert main(["--cleanup-expired"]) == EXIT_CONFIG

        cleanup.assert_not_called()
