"""Tests for mdrunner.gateway."""
