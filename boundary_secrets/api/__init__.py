"""
API Package.

HTTP front end for the boundary-secrets backend.
"""
