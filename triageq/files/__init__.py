"""File primitives - recoverable trash and collision-safe moves"""
