"""Service layer for the order fulfillment pipeline."""
