"""
InstantHPI staged message queue service
"""
