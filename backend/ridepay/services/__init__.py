"""Service layer for RidePay."""
