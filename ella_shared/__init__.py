"""
Shared building blocks for the ELLA API client: data models, interfaces,
exceptions and logging configuration.
"""
