"""Tests for mdrunner.api."""
