"""Analytics service exceptions."""


class AggregationIncomplete(Exception):
    """Aggregation could not read all of its data.

    Callers fall back to the last good cached baseline and flag the
    response as stale.
    """
    pass


class AggregationCancelled(AggregationIncomplete):
    """Aggregation stopped early because cancellation was requested."""
    pass
