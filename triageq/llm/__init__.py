"""Gemini access - model manager, retrying client, chat sessions, JSON extraction"""
