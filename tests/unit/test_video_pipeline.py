from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from video_recipe.app.domain.errors import DecodeError
from video_recipe.app.domain.models import ExtractedFrame, QueueStatus, RecipeStatus, UploadStatus
from video_recipe.app.services.chunked_upload import ChunkedUploader
from video_recipe.app.services.embeddings import EmbeddingGenerator
from video_recipe.app.services.job_state import ProcessingStateMachine
from video_recipe.app.services.recipe_synthesizer import RecipeSynthesizer
from video_recipe.app.services.video_pipeline import PipelineConfig, VideoPipeline
from video_recipe.app.services.vision import VisionDescriber

OWNER = "user-1"
DIMENSION = 8


class FrameExtractorStub:
    def __init__(self, timestamps: tuple[float, ...] = (0.0, 5.0, 10.0)) -> None:
        self.timestamps = timestamps
        self.error: Exception | None = None
        self.thumbnail_calls = 0

    def extract(self, video, interval: float = 5.0) -> list[ExtractedFrame]:
        if self.error is not None:
            raise self.error
        return [ExtractedFrame(timestamp=t, image=f"jpeg-{t:g}".encode()) for t in self.timestamps]

    def extract_thumbnail(self, video, at_seconds: float = 1.0) -> bytes:
        self.thumbnail_calls += 1
        return b"thumbnail"


def _frame_url(recipe_id: str, timestamp: float) -> str:
    return f"https://storage.test/frames/{OWNER}/{recipe_id}/{timestamp:g}.jpg"


@pytest.fixture
def video_file(tmp_path) -> Path:
    path = tmp_path / "video.mp4"
    path.write_bytes(b"x" * 20)
    return path


@pytest.fixture
def extractor() -> FrameExtractorStub:
    return FrameExtractorStub()


@pytest.fixture
def make_pipeline(fake_ai, recipe_repo, frame_repo, progress_repo, blob_storage, extractor):
    def _make(min_frame_success_rate: float = 0.0) -> VideoPipeline:
        return VideoPipeline(
            state=ProcessingStateMachine(recipe_repo),
            recipes=recipe_repo,
            frames=frame_repo,
            progress=progress_repo,
            storage=blob_storage,
            uploader=ChunkedUploader(blob_storage, chunk_size=8, simulate_small_uploads=False),
            extractor=extractor,
            vision=VisionDescriber(fake_ai),
            embeddings=EmbeddingGenerator(fake_ai, dimension=DIMENSION),
            synthesizer=RecipeSynthesizer(fake_ai, recipe_repo, frame_repo),
            config=PipelineConfig(min_frame_success_rate=min_frame_success_rate),
        )

    return _make


class TestVideoPipelineSuccess:
    def test_submit_runs_to_completion(self, make_pipeline, video_file, recipe_repo, frame_repo, blob_storage) -> None:
        outcome = make_pipeline().submit(OWNER, video_file)

        recipe = recipe_repo.recipes[outcome.recipe_id]
        assert outcome.status == QueueStatus.COMPLETED
        assert outcome.frames_total == 3
        assert outcome.frames_failed == 0
        assert outcome.summary_strategy == "full_json"
        assert recipe.status == RecipeStatus.COMPLETED
        assert recipe.title == "Tomato Pasta"
        assert recipe.video_url == f"https://storage.test/videos/{OWNER}/{recipe.id}.mp4"
        assert recipe.thumbnail_url == f"https://storage.test/thumbnails/{OWNER}/{recipe.id}.jpg"
        assert blob_storage.objects[("videos", f"{OWNER}/{recipe.id}.mp4")] == video_file.read_bytes()
        assert [s for _, s in recipe_repo.status_history] == [QueueStatus.PROCESSING, QueueStatus.COMPLETED]

    def test_frames_stored_with_fixed_dimension(self, make_pipeline, video_file, frame_repo) -> None:
        outcome = make_pipeline().submit(OWNER, video_file)

        assert [f.timestamp for f in frame_repo.frames] == [0.0, 5.0, 10.0]
        assert all(len(f.embedding) == DIMENSION for f in frame_repo.frames)
        assert frame_repo.frames[0].image_url == _frame_url(outcome.recipe_id, 0.0)

    def test_upload_progress_row_removed(self, make_pipeline, video_file, progress_repo) -> None:
        outcome = make_pipeline().submit(OWNER, video_file)

        assert progress_repo.get_progress(outcome.recipe_id) is None
        assert progress_repo.history[-1].status == UploadStatus.COMPLETED
        assert [p.bytes_uploaded for p in progress_repo.history[:4]] == [0, 8, 16, 20]

    def test_no_upload_parts_left(self, make_pipeline, video_file, blob_storage) -> None:
        make_pipeline().submit(OWNER, video_file)

        assert not [p for p in blob_storage.paths("videos") if ".part" in p]

    def test_supplied_thumbnail_skips_extraction(self, make_pipeline, video_file, extractor, blob_storage) -> None:
        outcome = make_pipeline().submit(OWNER, video_file, thumbnail=b"custom")

        assert extractor.thumbnail_calls == 0
        assert blob_storage.objects[("thumbnails", f"{OWNER}/{outcome.recipe_id}.jpg")] == b"custom"

    def test_attribution_recorded(self, make_pipeline, video_file, recipe_repo, fake_ai) -> None:
        fake_ai.social_responses[_frame_url("recipe-1", 10.0)] = "SOCIAL:instagram:pasta_queen"

        outcome = make_pipeline().submit(OWNER, video_file)

        assert recipe_repo.recipes[outcome.recipe_id].attribution.handle == "pasta_queen"


class TestVideoPipelineFrameFailures:
    def test_partial_failure_completes(self, make_pipeline, video_file, frame_repo, fake_ai) -> None:
        fake_ai.failing_urls.add(_frame_url("recipe-1", 5.0))

        outcome = make_pipeline().submit(OWNER, video_file)

        assert outcome.status == QueueStatus.COMPLETED
        assert outcome.frames_failed == 1
        placeholder = frame_repo.frames[1]
        assert placeholder.description.startswith("Description unavailable")
        assert placeholder.embedding is None
        assert frame_repo.frames[0].embedding is not None

    def test_only_described_frames_feed_synthesis(self, make_pipeline, video_file, fake_ai) -> None:
        fake_ai.failing_urls.add(_frame_url("recipe-1", 5.0))

        make_pipeline().submit(OWNER, video_file)

        prompt = fake_ai.complete_calls[0][0]
        assert "Description unavailable" not in prompt

    def test_all_failures_fail_job(self, make_pipeline, video_file, recipe_repo, frame_repo, fake_ai) -> None:
        fake_ai.failing_urls.update(_frame_url("recipe-1", t) for t in (0.0, 5.0, 10.0))

        outcome = make_pipeline().submit(OWNER, video_file)

        assert outcome.status == QueueStatus.FAILED
        assert outcome.error == "All 3 frame descriptions failed"
        assert recipe_repo.entries[outcome.recipe_id].error == "All 3 frame descriptions failed"
        assert recipe_repo.recipes[outcome.recipe_id].status == RecipeStatus.FAILED
        assert frame_repo.frames == []
        assert fake_ai.complete_calls == []

    def test_success_rate_threshold(self, make_pipeline, video_file, fake_ai) -> None:
        fake_ai.failing_urls.add(_frame_url("recipe-1", 5.0))

        outcome = make_pipeline(min_frame_success_rate=0.9).submit(OWNER, video_file)

        assert outcome.status == QueueStatus.FAILED

    def test_no_frames_fail_job(self, make_pipeline, video_file, extractor) -> None:
        extractor.timestamps = ()

        outcome = make_pipeline().submit(OWNER, video_file)

        assert outcome.status == QueueStatus.FAILED
        assert outcome.error == "No frames could be extracted from the video"


class TestVideoPipelineErrors:
    def test_upload_failure_fails_pending_job(self, make_pipeline, video_file, recipe_repo, progress_repo, blob_storage) -> None:
        blob_storage.fail_paths.add(f"{OWNER}/recipe-1.mp4.part1")

        outcome = make_pipeline().submit(OWNER, video_file)

        assert outcome.status == QueueStatus.FAILED
        assert outcome.error.startswith("Upload failed")
        assert [s for _, s in recipe_repo.status_history] == [QueueStatus.FAILED]
        assert progress_repo.get_progress(outcome.recipe_id).status == UploadStatus.FAILED
        assert blob_storage.paths("videos") == []

    def test_decode_error_fails_job(self, make_pipeline, video_file, extractor) -> None:
        extractor.error = DecodeError(str(video_file))

        outcome = make_pipeline().submit(OWNER, video_file)

        assert outcome.status == QueueStatus.FAILED
        assert "could not be decoded" in outcome.error

    def test_unexpected_error_fails_job_and_propagates(self, make_pipeline, video_file, extractor, recipe_repo) -> None:
        extractor.error = RuntimeError("segfault-ish")

        with pytest.raises(RuntimeError):
            make_pipeline().submit(OWNER, video_file)

        entry = recipe_repo.entries["recipe-1"]
        assert entry.status == QueueStatus.FAILED
        assert "segfault-ish" in entry.error

    def test_run_uses_existing_job(self, make_pipeline, video_file, recipe_repo) -> None:
        pipeline = make_pipeline()
        recipe, _ = pipeline.state.create_job(OWNER)

        outcome = pipeline.run(recipe.id, OWNER, video_file)

        assert outcome.recipe_id == recipe.id
        assert outcome.status == QueueStatus.COMPLETED
        assert len(recipe_repo.recipes) == 1

    def test_transport_error_during_upload_fails_job(self, make_pipeline, video_file, recipe_repo, progress_repo, blob_storage) -> None:
        upload = blob_storage.upload

        def refuse_videos(bucket, path, data, content_type="application/octet-stream"):
            if bucket == "videos":
                raise httpx.ConnectError("connection refused")
            return upload(bucket, path, data, content_type)

        blob_storage.upload = refuse_videos

        with pytest.raises(httpx.ConnectError):
            make_pipeline().submit(OWNER, video_file)

        assert recipe_repo.entries["recipe-1"].status == QueueStatus.FAILED
        assert recipe_repo.recipes["recipe-1"].status == RecipeStatus.FAILED
        assert progress_repo.get_progress("recipe-1").status == UploadStatus.FAILED

    def test_start_processing_write_failure_fails_job(self, make_pipeline, video_file, recipe_repo, extractor) -> None:
        recipe_repo.fail_once_on.add(QueueStatus.PROCESSING)

        outcome = make_pipeline().submit(OWNER, video_file)

        assert outcome.status == QueueStatus.FAILED
        assert outcome.error.startswith("Could not start processing")
        assert recipe_repo.entries["recipe-1"].status == QueueStatus.FAILED
        assert recipe_repo.recipes["recipe-1"].status == RecipeStatus.FAILED
        assert extractor.thumbnail_calls == 0

    def test_completion_write_failure_fails_job(self, make_pipeline, video_file, recipe_repo) -> None:
        recipe_repo.fail_once_on.add(QueueStatus.COMPLETED)

        outcome = make_pipeline().submit(OWNER, video_file)

        assert outcome.status == QueueStatus.FAILED
        assert recipe_repo.entries["recipe-1"].status == QueueStatus.FAILED
        assert recipe_repo.recipes["recipe-1"].status == RecipeStatus.FAILED
        assert [s for _, s in recipe_repo.status_history] == [QueueStatus.PROCESSING, QueueStatus.FAILED]
