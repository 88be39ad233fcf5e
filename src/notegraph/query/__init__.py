"""Query building blocks: boolean expressions, caches and the filter pipeline."""

from .cache import QueryCache
from .expression import BooleanExpression, Dimensions
from .pipeline import apply_filters_and_sorters

__all__ = ["BooleanExpression", "Dimensions", "QueryCache", "apply_filters_and_sorters"]
