"""SQLAlchemy models for Tourism Content Director."""
from tourism_director.models.location import Location
from tourism_director.models.experience import Experience, ExperienceLocation
from tourism_director.models.plan import Plan, PlanExperience
from tourism_director.models.setting import Setting
from tourism_director.models.job_lock import JobLock

__all__ = [
    "Location",
    "Experience",
    "ExperienceLocation",
    "Plan",
    "PlanExperience",
    "Setting",
    "JobLock",
]
