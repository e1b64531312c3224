"""
Models package for the Emergency Dispatch Service.
"""
from .assessment import EmergencyAssessment, Language, UrgencyLevel
from .dispatch import DispatchJob, DispatchStep, JobStatus, StepStatus

__all__ = [
    "EmergencyAssessment",
    "Language",
    "UrgencyLevel",
    "DispatchJob",
    "DispatchStep",
    "JobStatus",
    "StepStatus",
]
