"""Courses, their outline, enrollments, signatories and learner progress."""
