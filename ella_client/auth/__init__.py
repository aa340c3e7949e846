"""
Authentication package for the ELLA API client.

This package contains credential storage, the process-wide unauthenticated
notification and session management (login, logout, token claims).
"""
