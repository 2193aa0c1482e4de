# backend/lmsdb/__init__.py
"""
Multi-tenant LMS backend.

Each tenant ("site") has its own store; ORM models live in
lmsdb/apps/*/models.py and are collected by lmsdb.models.
"""
