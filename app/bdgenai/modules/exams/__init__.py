"""
Section exams: authoring, attempts, automatic grading and per-user analytics.

Essay answers are stored ungraded (is_correct = None) for manual review.
"""
