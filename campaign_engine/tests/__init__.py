"""Test suite for the campaign decision engine."""
