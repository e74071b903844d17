"""
Courses module.

- Course / Chapter / Section authoring with contiguous positions
- Learning objectives stored as an ordered JSON list on the course
- Readiness flags gate publishing; unpublishing the last chapter unpublishes the course
- Categories, attachments and one review per (course, user)
"""
