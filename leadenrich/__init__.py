"""
Lead enrichment pipeline: address validation, company registry enrichment
and configurable scoring for business-registry leads.
"""

__version__ = "1.0.0"
