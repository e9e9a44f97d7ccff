"""Classroom attendance, assignment and minimal-task records."""
