"""
Authenticated asyncio client for the ELLA REST API.

The API client attaches the stored access token to every request, refreshes
an expired session once for all requests waiting on it, and signals a forced
logout when the session cannot be recovered.
"""
