"""Tests for mdrunner.jobs."""
