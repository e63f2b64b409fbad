"""
CLI Package.

The brokerctl command line interface.
"""
