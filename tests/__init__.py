"""Tests for model-operator."""
