"""
Route prefixes. Every router is served both at the root and under API_PREFIX,
the path older tracking snippets were pointed at.
"""

API_PREFIX = "/api"
