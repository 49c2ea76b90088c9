"""Observability - logging, telemetry counters, host signals"""
