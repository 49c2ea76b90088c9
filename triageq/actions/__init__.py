"""Destructive-operation staging"""
