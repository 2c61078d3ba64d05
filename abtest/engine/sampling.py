import random
from typing import Callable, Sequence

from abtest.models.schemas.experiment import Variant

RandomFn = Callable[[], float]


def pick_weighted_variant(
    variants: Sequence[Variant], random_fn: RandomFn = random.random
) -> str:
    """
    Selects a variant name based on configured weights.

    Weights are not assumed to sum to exactly 1.0. A draw landing exactly on
    a cumulative boundary goes to the earlier variant.
    """
    if len(variants) == 1:
        return variants[0].name

    total_weight = sum(v.weight for v in variants)
    r = random_fn() * total_weight

    cumulative_weight = 0.0
    for variant in variants:
        cumulative_weight += variant.weight
        if r <= cumulative_weight:
            return variant.name

    # Floating point drift can leave r just above the final sum
    return variants[-1].name
