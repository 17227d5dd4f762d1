"""Remote store contract and implementations."""
