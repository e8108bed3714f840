"""
Relational storage for users, groups and group membership.
"""
