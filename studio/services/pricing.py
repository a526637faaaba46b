"""Token cost of generation requests.

Costs depend only on the shape of the request (how many source items it
carries), never on prompt length or image size.
"""

from __future__ import annotations


# Pure text-to-image request (no source item)
TEXT_TO_IMAGE_COST = 20

# First source item of a batch
BASE_ITEM_COST = 16

# Each source item after the first
EXTRA_ITEM_COST = 4

# Editing one image from the gallery
EDIT_COST = 16


def calculate_batch_cost(item_count: int) -> int:
    """Return the token cost of a batch with ``item_count`` source items.

    >>> calculate_batch_cost(0)
    20
    >>> calculate_batch_cost(3)
    24
    """
    if item_count < 0:
        raise ValueError(f"item_count must be non-negative, got {item_count}")
    if item_count == 0:
        return TEXT_TO_IMAGE_COST
    return BASE_ITEM_COST + EXTRA_ITEM_COST * (item_count - 1)


def calculate_edit_cost() -> int:
    """Return the token cost of editing a single image."""

    return EDIT_COST
