from __future__ import annotations

import httpx
import pytest

from video_recipe.app.domain.errors import StorageError, UploadConflict
from video_recipe.app.services.chunked_upload import ChunkedUploader, iter_chunks, part_path

BUCKET = "videos"
PATH = "user-1/recipe-1.mp4"
DATA = b"0123456789"


def _parts_left(storage) -> list[str]:
    return [path for path in storage.paths(BUCKET) if ".part" in path]


class ProgressRecorder:
    def __init__(self) -> None:
        self.calls: list[tuple[int, int]] = []

    def __call__(self, uploaded: int, total: int) -> None:
        self.calls.append((uploaded, total))


class TestIterChunks:
    def test_bytes(self) -> None:
        assert list(iter_chunks(DATA, 4)) == [b"0123", b"4567", b"89"]

    def test_file(self, tmp_path) -> None:
        source = tmp_path / "video.mp4"
        source.write_bytes(DATA)
        assert b"".join(iter_chunks(source, 3)) == DATA

    def test_part_path(self) -> None:
        assert part_path(PATH, 2) == "user-1/recipe-1.mp4.part2"


class TestPartsUpload:
    def test_success_stores_object_and_removes_parts(self, blob_storage) -> None:
        progress = ProgressRecorder()
        uploader = ChunkedUploader(blob_storage, chunk_size=3)

        uploader.upload(DATA, PATH, BUCKET, on_progress=progress)

        assert blob_storage.objects[(BUCKET, PATH)] == DATA
        assert _parts_left(blob_storage) == []
        assert progress.calls == [(3, 10), (6, 10), (9, 10), (10, 10)]

    def test_mid_stream_failure_leaves_zero_parts(self, blob_storage) -> None:
        blob_storage.fail_paths.add(part_path(PATH, 2))
        uploader = ChunkedUploader(blob_storage, chunk_size=3)

        with pytest.raises(StorageError):
            uploader.upload(DATA, PATH, BUCKET)

        assert _parts_left(blob_storage) == []
        assert (BUCKET, PATH) not in blob_storage.objects
        assert blob_storage.removed == [(BUCKET, [part_path(PATH, 0), part_path(PATH, 1)])]

    def test_final_write_failure_removes_all_parts(self, blob_storage) -> None:
        blob_storage.fail_paths.add(PATH)
        uploader = ChunkedUploader(blob_storage, chunk_size=4)

        with pytest.raises(StorageError):
            uploader.upload(DATA, PATH, BUCKET)

        assert _parts_left(blob_storage) == []

    def test_cleanup_is_retried(self, blob_storage) -> None:
        blob_storage.fail_paths.add(part_path(PATH, 1))
        blob_storage.fail_removes = 2
        uploader = ChunkedUploader(blob_storage, chunk_size=3, cleanup_attempts=3)

        with pytest.raises(StorageError):
            uploader.upload(DATA, PATH, BUCKET)

        assert _parts_left(blob_storage) == []

    def test_uploads_from_file(self, blob_storage, tmp_path) -> None:
        source = tmp_path / "video.mp4"
        source.write_bytes(DATA * 3)
        uploader = ChunkedUploader(blob_storage, chunk_size=8)

        uploader.upload(source, PATH, BUCKET)

        assert blob_storage.objects[(BUCKET, PATH)] == DATA * 3
        assert _parts_left(blob_storage) == []

    def test_existing_destination_is_conflict(self, blob_storage) -> None:
        blob_storage.objects[(BUCKET, PATH)] = b"old"
        uploader = ChunkedUploader(blob_storage, chunk_size=3)

        with pytest.raises(UploadConflict):
            uploader.upload(DATA, PATH, BUCKET)

        assert blob_storage.upload_calls == []
        assert blob_storage.objects[(BUCKET, PATH)] == b"old"


class TestSingleUpload:
    def test_small_payload_single_request(self, blob_storage) -> None:
        progress = ProgressRecorder()
        uploader = ChunkedUploader(blob_storage, chunk_size=64, simulate_small_uploads=False)

        uploader.upload(DATA, PATH, BUCKET, on_progress=progress)

        assert blob_storage.upload_calls == [(BUCKET, PATH)]
        assert progress.calls == [(10, 10)]

    def test_simulated_progress_finishes_at_total(self, blob_storage) -> None:
        progress = ProgressRecorder()
        uploader = ChunkedUploader(blob_storage, chunk_size=64)

        uploader.upload(DATA, PATH, BUCKET, on_progress=progress)

        assert progress.calls[-1] == (10, 10)
        assert all(uploaded <= 10 for uploaded, _ in progress.calls)

    def test_invalid_chunk_size(self, blob_storage) -> None:
        with pytest.raises(ValueError):
            ChunkedUploader(blob_storage, chunk_size=0)


class TestSignedUrlUpload:
    def _uploader(self, blob_storage, status_code: int, received: list[bytes]) -> ChunkedUploader:
        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request.content)
            return httpx.Response(status_code, text="done")

        client = httpx.Client(transport=httpx.MockTransport(handler))
        return ChunkedUploader(blob_storage, chunk_size=4, mode="signed_url", http_client=client)

    def test_streams_body_with_progress(self, blob_storage) -> None:
        received: list[bytes] = []
        progress = ProgressRecorder()

        self._uploader(blob_storage, 200, received).upload(DATA, PATH, BUCKET, on_progress=progress)

        assert received == [DATA]
        assert progress.calls == [(4, 10), (8, 10), (10, 10)]

    def test_conflict_status(self, blob_storage) -> None:
        with pytest.raises(UploadConflict):
            self._uploader(blob_storage, 409, []).upload(DATA, PATH, BUCKET)

    def test_error_status(self, blob_storage) -> None:
        with pytest.raises(StorageError):
            self._uploader(blob_storage, 500, []).upload(DATA, PATH, BUCKET)
