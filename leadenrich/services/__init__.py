"""
Pipeline services: address resolution, company enrichment, scoring, job processing.
"""
