"""
Boundary services that span components: registration and account management.
"""
