from .context import IdGenerator, RandomSource, ReductionOpportunityContext
from .finders import Opportunity, find_opportunities, select_opportunity

__all__ = [
    "IdGenerator",
    "Opportunity",
    "RandomSource",
    "ReductionOpportunityContext",
    "find_opportunities",
    "select_opportunity",
]
