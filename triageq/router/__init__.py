"""Task routing, tool execution, escalation"""
