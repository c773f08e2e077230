"""
Service layer for the contact intelligence feature.
"""

from .budget_gate import BudgetGate
from .grouping_enhancer import EnhancementOutcome, GroupingEnhancer
from .query_expansion import QueryExpansionService, normalize_query, query_expansion_service
from .rerank_service import RerankResult, RerankService
from .rules_grouping import RulesGroupingResult, RulesGroupingService, rules_grouping_service
from .semantic_search import SemanticSearchResult, SemanticSearchService, semantic_search_service
from .vector_search import VectorSearchResult, VectorSearchService, vector_search_service

__all__ = [
    "BudgetGate",
    "EnhancementOutcome",
    "GroupingEnhancer",
    "QueryExpansionService",
    "normalize_query",
    "query_expansion_service",
    "RerankResult",
    "RerankService",
    "RulesGroupingResult",
    "RulesGroupingService",
    "rules_grouping_service",
    "SemanticSearchResult",
    "SemanticSearchService",
    "semantic_search_service",
    "VectorSearchResult",
    "VectorSearchService",
    "vector_search_service",
]
