"""
LeadMailer: crawl, qualify and reach out to B2B websites.
"""
__version__ = "0.1.0"
