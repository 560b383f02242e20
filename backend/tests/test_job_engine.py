"""
JobEngine end-to-end tests.

Every test spawns real child processes: the fake ffprobe/ffmpeg from
conftest run under the current interpreter. No mocks between the engine
and the supervisor.

QC:
1. probe -> combine -> completed, with artifact and size recorded
2. Probe failure fails the job and never launches the combiner
3. Never more than the ceiling running; everything else queued FIFO
4. Cancellation is immediate and a cancelled queued job never runs
5. Exactly one slot is freed per finished job
"""

import asyncio
import os
import random
import sys
from pathlib import Path

import pytest

from conftest import (
    ARTIFACT_PAYLOAD,
    RecordingTemplate,
    by_source,
    combiner_template,
    probe_template,
    slow_combiner,
    wait_for,
)
from optimized_versions.jobs.engine import JobEngine
from optimized_versions.jobs.models import JobStatus


SOURCE = "http://jellyfin.local:8096/videos/{}/master.m3u8"


def source(marker: str = "item") -> str:
    return SOURCE.format(marker)


class TestGoldenPath:

    async def test_job_completes_with_artifact(self, make_engine):
        """
        GIVEN: prober reports 10s, combiner reports time=00:00:05 and exits 0
        WHEN: a job is submitted
        THEN: it runs immediately and ends COMPLETED at 100% with its size recorded
        """
        engine = make_engine(
            probe=probe_template("10.0"),
            combiner=combiner_template(lines=["frame=120 fps=48 time=00:00:05.00 bitrate=N/A speed=2.0x"]),
        )

        job_id = engine.submit(source(), device_id="phone", item_id="item-1", item={"Name": "Movie"})
        assert engine.get_status(job_id).status == JobStatus.RUNNING

        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100.0
        assert job.speed == 2.0
        assert job.error is None
        assert job.size_bytes == len(ARTIFACT_PAYLOAD)
        assert job.started_at is not None
        assert job.completed_at is not None
        assert job.item == {"Name": "Movie"}
        assert Path(engine.get_artifact_path(job_id)).read_bytes() == ARTIFACT_PAYLOAD

    async def test_artifact_path_is_unique_under_cache(self, make_engine, cache_dir):
        engine = make_engine(combiner=slow_combiner(), max_concurrent=2)

        first = engine.get_status(engine.submit(source("a"), file_extension="mkv"))
        second = engine.get_status(engine.submit(source("b"), file_extension="mkv"))

        assert first.output_path != second.output_path
        assert Path(first.output_path).parent == cache_dir.resolve()
        assert first.output_path.endswith(".mkv")

    async def test_artifact_path_only_once_completed(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        job_id = engine.submit(source())

        assert engine.get_artifact_path(job_id) is None
        assert engine.get_artifact_path("unknown") is None

    async def test_unknown_duration_still_completes(self, make_engine):
        """Prober exits 0 but prints N/A: no percentage, speed still recorded."""
        engine = make_engine(
            probe=probe_template("N/A"),
            combiner=combiner_template(lines=["time=00:00:05.00 speed=3.0x"]),
        )

        job_id = engine.submit(source())
        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100.0
        assert job.speed == 3.0

    async def test_missing_output_does_not_fail_completion(self, make_engine):
        """Exit 0 is success even if the artifact cannot be stat'ed."""
        engine = make_engine(combiner=combiner_template(payload=None))

        job_id = engine.submit(source())
        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.size_bytes is None


class TestFailures:

    async def test_probe_failure_never_runs_combiner(self, make_engine):
        """
        GIVEN: prober exits 1
        WHEN: a job is submitted
        THEN: the job is FAILED and the combiner template was never used
        """
        combiner = RecordingTemplate(combiner_template())
        engine = make_engine(probe=probe_template("", exit_code=1), combiner=combiner)

        job_id = engine.submit(source())
        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert "Probe failed" in job.error
        assert "exit code: 1" in job.error
        assert job.progress == 0.0
        assert combiner.calls == []

    async def test_combiner_nonzero_exit_fails_job(self, make_engine):
        engine = make_engine(
            combiner=combiner_template(
                lines=["time=00:00:04.00 speed=1.0x", "master.m3u8: Invalid data found when processing input"],
                exit_code=1,
                payload=None,
            ),
        )

        job_id = engine.submit(source())
        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert job.progress == 0.0
        assert "Combine failed" in job.error
        assert "Invalid data found" in job.error
        assert engine.get_artifact_path(job_id) is None

    async def test_combiner_launch_failure(self, make_engine, tmp_path):
        missing = str(tmp_path / "no-such-ffmpeg")
        engine = make_engine(combiner=lambda job: [missing, "-i", job.input_url, job.output_path])

        job_id = engine.submit(source())
        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert "could not launch" in job.error

    async def test_probe_launch_failure(self, make_engine, tmp_path):
        missing = str(tmp_path / "no-such-ffprobe")
        engine = make_engine(probe=lambda job: [missing, job.input_url])

        job_id = engine.submit(source())
        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert "Probe failed" in job.error

    async def test_probe_diagnostic_is_kept_in_error(self, make_engine):
        """
        GIVEN: prober explains its failure on stderr and exits 1
        WHEN: a job is submitted
        THEN: the job error carries the prober's last diagnostic line
        """
        engine = make_engine(
            probe=probe_template(
                "",
                exit_code=1,
                stderr="[http @ 0x5581] HTTP error 401\nServer returned 401 Unauthorized (authorization failed)\n\n",
            ),
        )

        job_id = engine.submit(source())
        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert "exit code: 1" in job.error
        assert job.error.endswith("Server returned 401 Unauthorized (authorization failed)")

    async def test_unlaunchable_probe_argv_fails_as_probe(self, make_engine):
        """A NUL byte in the source URL cannot be passed to exec; that is a probe failure."""
        combiner = RecordingTemplate(combiner_template())
        engine = make_engine(
            probe=lambda job: [sys.executable, "-c", "print(10.0)", job.input_url],
            combiner=combiner,
        )

        job_id = engine.submit("http://jellyfin.local/videos/a\x00b/master.m3u8")
        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error.startswith("Probe failed")
        assert "could not launch" in job.error
        assert combiner.calls == []

    async def test_unlaunchable_combiner_argv_fails_as_combine(self, make_engine):
        engine = make_engine(
            combiner=lambda job: [sys.executable, "-c", "pass", job.input_url, job.output_path],
        )

        job_id = engine.submit("http://jellyfin.local/videos/a\x00b/master.m3u8")
        await engine.join()

        job = engine.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error.startswith("Combine failed")
        assert "could not launch" in job.error

    async def test_failure_frees_slot_for_next_job(self, make_engine):
        engine = make_engine(
            combiner=by_source({"bad": combiner_template(exit_code=1, payload=None), "good": combiner_template()}),
        )

        bad = engine.submit(source("bad"))
        good = engine.submit(source("good"))
        assert engine.get_status(good).status == JobStatus.QUEUED

        await engine.join()

        assert engine.get_status(bad).status == JobStatus.FAILED
        assert engine.get_status(good).status == JobStatus.COMPLETED


class TestSubmitValidation:

    async def test_extension_is_normalized(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        job = engine.get_status(engine.submit(source(), file_extension=".MKV"))

        assert job.file_extension == "mkv"
        assert job.output_path.endswith(".mkv")

    async def test_unsupported_extension_rejected(self, make_engine):
        engine = make_engine()

        with pytest.raises(ValueError):
            engine.submit(source(), file_extension="avi")
        assert engine.list_jobs() == []

    async def test_empty_url_rejected(self, make_engine):
        engine = make_engine()

        with pytest.raises(ValueError):
            engine.submit("")

    def test_submit_requires_running_loop(self, cache_dir):
        engine = JobEngine(cache_dir=cache_dir)

        with pytest.raises(RuntimeError):
            engine.submit(source())
        assert engine.list_jobs() == []


class TestConcurrencyCeiling:

    @pytest.mark.parametrize("ceiling,submitted", [(1, 3), (2, 5), (3, 2)])
    async def test_running_never_exceeds_ceiling(self, make_engine, ceiling, submitted):
        """
        GIVEN: combiners that run until killed
        WHEN: N jobs are submitted with ceiling C
        THEN: min(N, C) are RUNNING and the rest QUEUED in arrival order
        """
        engine = make_engine(combiner=slow_combiner(), max_concurrent=ceiling)

        job_ids = [engine.submit(source(str(i))) for i in range(submitted)]
        statuses = [engine.get_status(job_id).status for job_id in job_ids]

        running = min(submitted, ceiling)
        assert statuses[:running] == [JobStatus.RUNNING] * running
        assert statuses[running:] == [JobStatus.QUEUED] * (submitted - running)
        assert [engine.get_queue_position(job_id) for job_id in job_ids[running:]] == list(
            range(1, submitted - running + 1)
        )

    async def test_random_submissions_and_cancellations(self, make_engine):
        rng = random.Random(20240611)
        ceiling = 2
        engine = make_engine(combiner=slow_combiner(), max_concurrent=ceiling)
        active = []

        for _ in range(30):
            if active and rng.random() < 0.4:
                victim = rng.choice(active)
                assert engine.cancel(victim) is True
                active.remove(victim)
            else:
                active.append(engine.submit(source(str(rng.random()))))

            running = [j for j in active if engine.get_status(j).status == JobStatus.RUNNING]
            queued = [j for j in active if engine.get_status(j).status == JobStatus.QUEUED]
            assert len(running) == min(len(active), ceiling)
            assert len(queued) == len(active) - len(running)

    async def test_completion_frees_exactly_one_slot(self, make_engine):
        engine = make_engine(
            combiner=by_source({"fast": combiner_template(), "slow": slow_combiner()}),
            max_concurrent=1,
        )

        fast = engine.submit(source("fast"))
        slow_a = engine.submit(source("slow-a"))
        slow_b = engine.submit(source("slow-b"))

        await wait_for(lambda: engine.get_status(fast).status == JobStatus.COMPLETED)

        assert engine.get_status(slow_a).status == JobStatus.RUNNING
        assert engine.get_status(slow_b).status == JobStatus.QUEUED
        assert engine.get_queue_position(slow_b) == 1
        assert engine.registry.running_count() == 1

    async def test_backlog_drains_in_order(self, make_engine):
        engine = make_engine(max_concurrent=1)

        job_ids = [engine.submit(source(str(i))) for i in range(4)]
        await engine.join()

        jobs = [engine.get_status(job_id) for job_id in job_ids]
        assert all(job.status == JobStatus.COMPLETED for job in jobs)
        started = [job.started_at for job in jobs]
        assert started == sorted(started)


class TestCancellation:

    async def test_cancel_queued_job_never_runs(self, make_engine):
        combiner = RecordingTemplate(combiner_template())
        engine = make_engine(combiner=by_source({"first": slow_combiner(), "second": combiner}))

        first = engine.submit(source("first"))
        second = engine.submit(source("second"))

        assert engine.cancel(second) is True
        assert engine.get_status(second).status == JobStatus.CANCELLED
        assert engine.get_queue_position(second) == -1

        assert engine.cancel(first) is True
        await engine.join()

        assert combiner.calls == []
        assert engine.get_status(second).status == JobStatus.CANCELLED

    async def test_cancel_running_job_kills_process(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        job_id = engine.submit(source())

        await wait_for(lambda: engine.supervisor.get_duration(job_id) is not None)
        await wait_for(lambda: engine.supervisor.has_process(job_id))

        assert engine.cancel(job_id) is True
        assert engine.get_status(job_id).status == JobStatus.CANCELLED
        assert not engine.supervisor.has_process(job_id)

        await asyncio.wait_for(engine.join(), timeout=10)

        job = engine.get_status(job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.completed_at is not None
        assert engine.supervisor.supervised_count == 0

    async def test_cancel_right_after_admission(self, make_engine):
        """Cancel before the supervisor task first runs: nothing is spawned."""
        probe = RecordingTemplate(probe_template())
        engine = make_engine(probe=probe, combiner=slow_combiner())

        job_id = engine.submit(source())
        assert engine.cancel(job_id) is True
        await engine.join()

        assert probe.calls == []
        assert engine.get_status(job_id).status == JobStatus.CANCELLED

    async def test_cancel_frees_slot_immediately(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        first = engine.submit(source("first"))
        second = engine.submit(source("second"))

        engine.cancel(first)

        assert engine.get_status(second).status == JobStatus.RUNNING

    async def test_cancel_is_negative_for_unknown_and_terminal(self, make_engine):
        engine = make_engine()
        job_id = engine.submit(source())
        await engine.join()

        assert engine.cancel(job_id) is False
        assert engine.get_status(job_id).status == JobStatus.COMPLETED
        assert engine.cancel("unknown") is False

    async def test_cancel_twice(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        job_id = engine.submit(source())

        assert engine.cancel(job_id) is True
        assert engine.cancel(job_id) is False


class TestManualStart:

    async def test_start_now_promotes_queued_job(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        running = engine.submit(source("a"))
        b = engine.submit(source("b"))
        c = engine.submit(source("c"))

        assert engine.start_now(c) is True
        assert engine.get_queue_position(c) == 1
        assert engine.get_queue_position(b) == 2
        assert engine.get_status(running).status == JobStatus.RUNNING
        assert engine.registry.running_count() == 1

        engine.cancel(running)
        assert engine.get_status(c).status == JobStatus.RUNNING
        assert engine.get_status(b).status == JobStatus.QUEUED

    async def test_start_now_rejects_non_queued(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        running = engine.submit(source())

        assert engine.start_now(running) is False
        assert engine.start_now("unknown") is False


class TestRetireAndMaintenance:

    async def test_retire_completed_job(self, make_engine):
        engine = make_engine()
        job_id = engine.submit(source())
        await engine.join()

        assert engine.retire(job_id) is True
        assert engine.get_status(job_id) is None
        assert engine.retire(job_id) is False

    async def test_retire_running_job_cancels_it(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        running = engine.submit(source("a"))
        queued = engine.submit(source("b"))

        assert engine.retire(running) is True
        assert engine.get_status(running) is None
        assert engine.get_status(queued).status == JobStatus.RUNNING

        await engine.shutdown()
        assert engine.supervisor.supervised_count == 0

    async def test_list_jobs_by_device(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        phone = engine.submit(source("a"), device_id="phone")
        engine.submit(source("b"), device_id="tablet")

        assert [job.id for job in engine.list_jobs(device_id="phone")] == [phone]
        assert len(engine.list_jobs()) == 2

    async def test_status_is_a_snapshot(self, make_engine):
        engine = make_engine(combiner=slow_combiner())
        job_id = engine.submit(source())

        snapshot = engine.get_status(job_id)
        snapshot.progress = 75.0

        assert engine.get_status(job_id).progress == 0.0

    async def test_statistics(self, make_engine):
        engine = make_engine(
            combiner=by_source({"done": combiner_template(), "slow": slow_combiner()}),
        )
        engine.submit(source("done"), device_id="phone")
        await engine.join()
        engine.submit(source("slow-a"), device_id="phone")
        engine.submit(source("slow-b"), device_id="tablet")

        stats = await engine.get_statistics()

        assert stats.total_transcodes == 3
        assert stats.completed_jobs == 1
        assert stats.active_jobs == 1
        assert stats.queued_jobs == 1
        assert stats.unique_devices == 2
        assert stats.cache_size_bytes == len(ARTIFACT_PAYLOAD)
        assert stats.cache_size == f"{len(ARTIFACT_PAYLOAD)} B"

    async def test_delete_cache_keeps_active_artifacts(self, make_engine, cache_dir):
        engine = make_engine(
            combiner=by_source({"done": combiner_template(), "slow": slow_combiner()}),
        )
        done = engine.submit(source("done"))
        await engine.join()
        running = engine.submit(source("slow"))

        running_output = Path(engine.get_status(running).output_path)
        running_output.write_bytes(b"partial")
        (cache_dir / "stray.ts").write_bytes(b"stray")

        removed = await engine.delete_cache()

        assert removed == 2
        assert engine.get_status(done) is None
        assert engine.get_status(running).status == JobStatus.RUNNING
        assert running_output.exists()
        assert not (cache_dir / "stray.ts").exists()


class TestShutdownAndIsolation:

    async def test_shutdown_cancels_everything(self, make_engine):
        engine = make_engine(combiner=slow_combiner(), max_concurrent=2)
        job_ids = [engine.submit(source(str(i))) for i in range(3)]

        await asyncio.wait_for(engine.shutdown(), timeout=10)

        assert all(engine.get_status(j).status == JobStatus.CANCELLED for j in job_ids)
        assert engine.supervisor.supervised_count == 0

        with pytest.raises(RuntimeError):
            engine.submit(source())

    async def test_engines_are_independent(self, make_engine, tmp_path):
        first = make_engine(combiner=slow_combiner(), root=tmp_path / "one")
        second = make_engine(combiner=slow_combiner(), root=tmp_path / "two")

        job_id = first.submit(source())
        other = second.submit(source())

        assert second.get_status(job_id) is None
        assert second.cancel(job_id) is False
        assert first.get_status(job_id).status == JobStatus.RUNNING
        assert second.get_status(other).status == JobStatus.RUNNING
        assert os.path.dirname(first.get_status(job_id).output_path) != os.path.dirname(
            second.get_status(other).output_path
        )
