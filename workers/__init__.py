"""
Background workers for lead enrichment.
"""
