"""Edge node: read-through cache in front of a single origin."""
