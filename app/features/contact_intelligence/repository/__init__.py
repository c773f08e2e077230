"""
Repository layer for the contact intelligence feature.
"""

from .contact_repository import ContactRepository
from .group_repository import GroupRepository, GroupRepositoryError
from .job_repository import JobRepository, JobRepositoryError
from .subscription_repository import SubscriptionRepository
from .usage_repository import UsageRepository, UsageRepositoryError

__all__ = [
    "ContactRepository",
    "GroupRepository",
    "GroupRepositoryError",
    "JobRepository",
    "JobRepositoryError",
    "SubscriptionRepository",
    "UsageRepository",
    "UsageRepositoryError",
]
