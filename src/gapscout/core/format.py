"""
Display formatting for distances, areas and census figures.

A value of 0 for census money/count fields means "not available" upstream, so the
number formatters render it as `N/A` instead of a misleading zero.
"""

from __future__ import annotations

from gapscout.core.geo import METERS_PER_MILE, meters_to_miles

SQUARE_METERS_PER_SQUARE_MILE = 2_589_988.11

NOT_AVAILABLE = "N/A"


def format_distance(meters: float) -> str:
    """Format a distance with the unit a map reader expects at that scale."""
    if meters < 1000:
        return f"{round(meters)}m"
    if meters < METERS_PER_MILE:
        return f"{meters / 1000:.1f}km"
    return f"{meters_to_miles(meters):.1f} miles"


def format_area(square_meters: float) -> str:
    if square_meters < 10_000:
        return f"{round(square_meters)} m²"
    if square_meters < 1_000_000:
        return f"{square_meters / 10_000:.1f} hectares"
    return f"{square_meters / SQUARE_METERS_PER_SQUARE_MILE:.2f} sq miles"


def format_currency(value: float) -> str:
    if value == 0:
        return NOT_AVAILABLE
    return f"${value:,.0f}"


def format_number(value: float) -> str:
    if value == 0:
        return NOT_AVAILABLE
    return f"{value:,}"


def format_percent(value: float) -> str:
    if value == 0:
        return NOT_AVAILABLE
    return f"{value:.1f}%"
