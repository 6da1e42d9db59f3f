"""
Tests for generation records and the background watcher.
"""
import threading

from v2v.jobs import TaskWatcher
from v2v.poller import PollPolicy
from v2v.validation import GenerationParams

from fakes import ScriptedStatus, make_task

PARAMS = GenerationParams(prompt_text="a fox in snow", model="gen4_aleph", ratio="1280:720",
                          video_uri="https://cdn.test/in.mp4", seed=11)


class TestJobStore:

    def test_make_and_get(self, job_store):
        job_store.make_job("task-1", PARAMS)
        job = job_store.get_job("task-1")
        assert job["status"] == "QUEUED"
        assert job["prompt"] == "a fox in snow"
        assert job["seed"] == 11

    def test_record_task(self, job_store):
        job_store.make_job("task-1", PARAMS)
        job_store.record_task(make_task("RUNNING", progress=40, queue_position=2))
        job = job_store.get_job("task-1")
        assert job["status"] == "RUNNING"
        assert job["progress"] == 40
        assert job["queue_position"] == 2

    def test_update_unknown_job(self, job_store):
        assert not job_store.update_job("nope", status="RUNNING")

    def test_list_newest_first_with_paging(self, job_store):
        for i in range(3):
            job_store.make_job(f"task-{i}", PARAMS)
            job_store.col.docs[-1]["created_at"] = float(i)

        total, items = job_store.list_jobs(page=1, per_page=2)
        assert total == 3
        assert [j["task_id"] for j in items] == ["task-2", "task-1"]
        assert "_id" not in items[0]

        _, items = job_store.list_jobs(page=2, per_page=2)
        assert [j["task_id"] for j in items] == ["task-0"]


class TestTaskWatcher:

    def test_records_progress_and_outcome(self, job_store, clock):
        job_store.make_job("task-1", PARAMS)
        fetch = ScriptedStatus(
            make_task("RUNNING", progress=10),
            make_task("SUCCEEDED", outputs=["https://cdn.test/out.mp4"]),
        )
        watcher = TaskWatcher(fetch, job_store, policy=PollPolicy(interval_ms=10), clock=clock)

        assert watcher.watch("task-1")
        watcher.join("task-1", timeout=5)

        job = job_store.get_job("task-1")
        assert job["poll_state"] == "SUCCEEDED"
        assert job["status"] == "SUCCEEDED"
        assert job["outputs"] == ["https://cdn.test/out.mp4"]
        assert job["attempts"] == 2
        assert not watcher.is_watching("task-1")

    def test_one_session_per_task_and_cancel(self, job_store, clock):
        job_store.make_job("task-1", PARAMS)
        gate = threading.Event()

        def slow():
            gate.wait(5)
            return make_task("RUNNING")

        watcher = TaskWatcher(ScriptedStatus(slow), job_store, policy=PollPolicy(interval_ms=10), clock=clock)
        assert watcher.watch("task-1")
        assert not watcher.watch("task-1")

        assert watcher.cancel("task-1")
        gate.set()
        watcher.join("task-1", timeout=5)

        assert job_store.get_job("task-1")["poll_state"] == "CANCELLED"
        assert not watcher.cancel("task-1")

    def test_crashed_session_is_recorded(self, job_store, clock):
        job_store.make_job("task-1", PARAMS)
        watcher = TaskWatcher(ScriptedStatus(KeyError("bug")), job_store,
                              policy=PollPolicy(interval_ms=10), clock=clock)
        watcher.watch("task-1")
        watcher.join("task-1", timeout=5)

        job = job_store.get_job("task-1")
        assert job["poll_state"] == "FAILED"
        assert "bug" in job["error"]
