"""Test package for the credit core."""
