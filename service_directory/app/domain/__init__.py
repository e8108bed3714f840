"""
Domain types shared by the authorization core, persistence and HTTP layers.
"""
