"""Background jobs: content generation and the two rebuild jobs, plus the retry policy."""
from tourism_director.jobs.content_generation_job import ContentGenerationJob
from tourism_director.jobs.rebuild_experiences_job import RebuildExperiencesJob
from tourism_director.jobs.rebuild_plans_job import RebuildPlansJob
from tourism_director.jobs.retry import perform_with_retry
from tourism_director.jobs.runner import is_running, start_job, stop_jobs

__all__ = [
    "ContentGenerationJob",
    "RebuildExperiencesJob",
    "RebuildPlansJob",
    "perform_with_retry",
    "is_running",
    "start_job",
    "stop_jobs",
]
