"""Spreadsheet API access: client, cell parsers, row normalizer, diagnostics."""
