import math


def round_half_up(value):
    """Round to the nearest integer, halves going up (62.5 -> 63)."""
    return int(math.floor(value + 0.5))


def percentage(part, whole):
    """Integer percentage of ``part`` over ``whole``; 0 when ``whole`` is 0."""
    if not whole:
        return 0
    return round_half_up(100 * part / whole)


def mean(values):
    values = list(values)
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))
