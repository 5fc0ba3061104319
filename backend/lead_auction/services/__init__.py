"""Lead Auction Engine - Services"""
