"""Command line tool for model-operator."""
