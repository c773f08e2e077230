"""
Contact intelligence feature package.

Semantic contact search (query expansion, vector retrieval, reranking) and
contact grouping (rules-based and AI-assisted background jobs), all paid
calls going through the budget gate. Every layer of the slice lives here:
domain models, providers, repositories, services, jobs and the API router.
"""

from .api import contacts_router  # noqa: F401
from .jobs import job_queue, run_ai_grouping_worker  # noqa: F401
