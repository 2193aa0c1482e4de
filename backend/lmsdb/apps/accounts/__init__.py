# backend/lmsdb/apps/accounts/__init__.py
"""
Accounts app

Responsible for:
- Users of a site (employees, external learners, admins)
- Public auth endpoints (login, logout, signup, switch-site, me)
- Admin endpoints for users and site settings
"""
