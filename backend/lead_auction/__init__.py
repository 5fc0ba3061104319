"""Lead Auction Engine - auction and offer lifecycle for business financing leads"""

__version__ = "1.0.0"
