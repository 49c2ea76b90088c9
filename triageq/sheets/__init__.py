"""Spreadsheet log targets - local workbooks and Google Sheets"""
