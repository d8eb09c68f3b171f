# Copyright (c) Syntropy Systems
"""Pydantic schemas and job records for codeduel."""
