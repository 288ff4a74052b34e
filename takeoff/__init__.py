"""Construction plan takeoff pipeline."""
