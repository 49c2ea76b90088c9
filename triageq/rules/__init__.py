"""Rule evaluation for files and email"""
