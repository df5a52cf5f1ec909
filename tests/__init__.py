"""Tests for the inline replay harness."""
