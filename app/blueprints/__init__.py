"""
Governance Signal Platform
Blueprint registry.
"""
