"""
Conversion lookup utilities for the /convert endpoints.

This module contains utility functions for looking up conversion strategies,
document routes and supported formats, and for checking the capability
matrix at startup.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from ..config import (
    CAPABILITY_MATRIX,
    DOCUMENT_ROUTES,
    FORMAT_ALIASES,
    FORMAT_FAMILY_CATEGORIES,
    ConversionCategory,
    ConversionStrategy,
    DocumentTool,
    GatewaySettings,
)
from .error_handling import (
    UnsupportedConversion,
    UnsupportedFormat,
    validate_format_parameter,
)


def normalize_target(target_format: Optional[str]) -> str:
    """
    Validate a requested target format and return its lookup key.

    ``jpg`` is looked up as ``jpeg``; callers keep the raw value for display.
    """
    value = validate_format_parameter(target_format, "targetFormat")
    return FORMAT_ALIASES.get(value, value)


def parse_category(conversion_type: Optional[str]) -> ConversionCategory:
    """
    Parse the requested conversion category.

    Raises:
        MissingParameter: If absent
        InvalidParameter: If malformed
        UnsupportedConversion: If well-formed but not a known category
    """
    value = validate_format_parameter(conversion_type, "conversionType", min_length=2, max_length=16)
    try:
        return ConversionCategory(value)
    except ValueError:
        raise UnsupportedConversion(f"Conversion type '{value}' is not supported")


def get_strategy(
    category: ConversionCategory,
    target: str,
    settings: Optional[GatewaySettings] = None
) -> Tuple[ConversionStrategy, str]:
    """
    Look up the strategy for a (category, target) pair.

    Args:
        category: Conversion category
        target: Normalized target format
        settings: Runtime settings used to filter disabled entries

    Returns:
        Tuple of (strategy, description)

    Raises:
        UnsupportedFormat: Miss inside a format-family category (image)
        UnsupportedConversion: Any other miss
    """
    entry = CAPABILITY_MATRIX.get((category, target))
    if entry is not None and settings is not None and settings.is_disabled(category, target):
        entry = None

    if entry is None:
        if category in FORMAT_FAMILY_CATEGORIES:
            raise UnsupportedFormat(f"Unsupported {category.value} format: {target}")
        raise UnsupportedConversion(f"Conversion of {category.value} to {target} is not supported")

    return entry


def get_document_routes(source_format: Optional[str], target: str) -> List[Tuple[DocumentTool, str]]:
    """
    Get the document tools able to convert a source format to a target.

    Returns:
        List of (tool, description) in priority order, empty on a miss
    """
    if not source_format:
        return []
    return list(DOCUMENT_ROUTES.get((source_format.lower(), target.lower()), []))


def get_supported_conversions(settings: Optional[GatewaySettings] = None) -> Dict[str, List[str]]:
    """
    Get the enabled targets of every category.

    Returns:
        Dictionary mapping category names to lists of target formats
    """
    supported: Dict[str, List[str]] = {category.value: [] for category in ConversionCategory}
    for (category, target) in CAPABILITY_MATRIX:
        if settings is not None and settings.is_disabled(category, target):
            continue
        if target not in supported[category.value]:
            supported[category.value].append(target)

    return supported


def get_supported_document_routes() -> Dict[str, List[str]]:
    """Get document source formats and the targets each can reach."""
    routes: Dict[str, List[str]] = {}
    for (source, target) in DOCUMENT_ROUTES:
        routes.setdefault(source, [])
        if target not in routes[source]:
            routes[source].append(target)
    return routes


def validate_capability_matrix(registered_strategies: Iterable[ConversionStrategy]) -> None:
    """
    Check the capability matrix for completeness.

    Every category must have at least one entry, every strategy used must
    have an implementation, and every document target must be reachable
    through at least one document route.

    Raises:
        RuntimeError: Describing every problem found
    """
    registered = set(registered_strategies)
    problems = []

    for category in ConversionCategory:
        if not any(cat == category for (cat, _) in CAPABILITY_MATRIX):
            problems.append(f"category '{category.value}' has no capability entries")

    for (category, target), (strategy, _) in CAPABILITY_MATRIX.items():
        if strategy not in registered:
            problems.append(f"{category.value}:{target} uses unregistered strategy {strategy.value}")

    route_targets = {target for (_, target) in DOCUMENT_ROUTES}
    for (category, target), (strategy, _) in CAPABILITY_MATRIX.items():
        if strategy == ConversionStrategy.DOCUMENT and target not in route_targets:
            problems.append(f"document target '{target}' has no document route")

    for key, tools in DOCUMENT_ROUTES.items():
        if not tools:
            problems.append(f"document route {key} lists no tools")
        elif (ConversionCategory.DOCUMENT, key[1]) not in CAPABILITY_MATRIX:
            problems.append(f"document route {key} targets a format missing from the matrix")

    if problems:
        raise RuntimeError("Capability matrix is incomplete: " + "; ".join(problems))
