"""Pydantic schemas for payment requests, allocation results and reports."""
