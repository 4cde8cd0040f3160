from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from rapidalle.core.metrics import pipeline_runs_total
from rapidalle.features.generation.errors import PipelineStepError
from rapidalle.features.generation.pipeline import GenerationPipeline
from rapidalle.workers import generate_content as job_module
from rapidalle.tests.mocks import FakeCaptionClient, FakeImageClient


def _fake_job(run_id="run_job1", attempts=0, retries_left=None):
    return SimpleNamespace(
        id=run_id,
        meta={"attempts": attempts, "user_id": "job-user"},
        save_meta=MagicMock(),
        retries_left=retries_left,
    )


@pytest.fixture
def use_pipeline(monkeypatch):
    def _install(caption=None, image=None):
        pipeline = GenerationPipeline(caption or FakeCaptionClient(), image or FakeImageClient())
        monkeypatch.setattr(job_module, "pipeline_factory", lambda: pipeline)
        return pipeline
    return _install


def test_job_returns_output_and_records_meta(monkeypatch, use_pipeline):
    job = _fake_job()
    monkeypatch.setattr(job_module, "get_current_job", lambda: job)
    use_pipeline(caption=FakeCaptionClient(text="hello"), image=FakeImageClient(url="https://img/1.png"))

    output = job_module.generate_content("theme", "desc", size="256x256", user_id="job-user")

    assert output == {"text": "hello", "image": "https://img/1.png", "imageBase64": None}
    assert job.meta["attempts"] == 1
    assert job.meta["persisted"] is True
    assert job.meta["warnings"] == []
    assert pipeline_runs_total.value({"outcome": "completed"}) == 1


def test_step_failure_records_error_and_reraises(monkeypatch, use_pipeline):
    job = _fake_job(attempts=1, retries_left=3)
    monkeypatch.setattr(job_module, "get_current_job", lambda: job)
    use_pipeline(caption=FakeCaptionClient(text=None))

    with pytest.raises(PipelineStepError):
        job_module.generate_content("theme", "desc", user_id="job-user")

    assert job.meta["attempts"] == 2
    assert job.meta["last_error"] == "caption: No content, retrying"
    assert pipeline_runs_total.value({"outcome": "retry"}) == 1


def test_last_attempt_failure_counts_as_failed(monkeypatch, use_pipeline):
    job = _fake_job(attempts=4, retries_left=0)
    monkeypatch.setattr(job_module, "get_current_job", lambda: job)
    use_pipeline(image=FakeImageClient(error=PipelineStepError("provider down", "image")))

    with pytest.raises(PipelineStepError):
        job_module.generate_content("theme", "desc", user_id="job-user")

    assert pipeline_runs_total.value({"outcome": "failed"}) == 1


def test_job_runs_outside_a_worker(monkeypatch, use_pipeline):
    monkeypatch.setattr(job_module, "get_current_job", lambda: None)
    use_pipeline()

    output = job_module.generate_content("theme", "desc")
    assert output["text"] == "A caption"
