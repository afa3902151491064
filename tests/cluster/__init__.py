"""Tests for mdrunner.cluster."""
