"""Read-only analysis helpers"""
