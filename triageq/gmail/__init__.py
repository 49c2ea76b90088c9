"""Gmail provider adapters"""
