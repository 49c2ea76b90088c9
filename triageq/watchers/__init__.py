"""Folder and mailbox watchers"""
