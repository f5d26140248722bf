"""
Entry point for running LLM Visibility as a module.

Enables execution via:
    python -m llm_visibility [command] [options]

This is equivalent to running the installed CLI:
    llm-visibility [command] [options]

Examples:
    python -m llm_visibility --help
    python -m llm_visibility run --config examples/visibility.config.yaml --company u1
    python -m llm_visibility validate --config examples/visibility.config.yaml
"""

from llm_visibility.cli import app

if __name__ == "__main__":
    app()
