"""
Connector Infrastructure Package
Outbound delivery integrations used by the outreach executor
"""
