"""Infrastructure - settings, database, retry helpers"""
