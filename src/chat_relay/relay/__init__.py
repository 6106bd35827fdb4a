"""Chat-side half of the relay: interception, ordering and presentation."""
