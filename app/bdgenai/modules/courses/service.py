from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.bdgenai.audit import record_event
from app.bdgenai.utils import clean_str, iso, parse_decimal, splice_move, text_value

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.bdgenai.models import User
    from app.bdgenai.modules.courses.models import Category, Chapter, Course, CourseReview, Section


COURSE_FIELDS = ("title", "description", "image_url", "price", "what_you_will_learn", "category_id", "is_published")
CHAPTER_FIELDS = ("title", "description", "learning_outcomes", "is_free")
SECTION_FIELDS = ("title", "description", "video_url", "is_preview")

# Readiness flags in display order.
READINESS_FLAGS = ("title_desc", "learning_obj", "image", "pricing", "category", "chapters", "attachments")
MIN_FLAGS_TO_PUBLISH = 2


class NotFound(LookupError):
    pass


# ---------- Serialization ----------
def _price(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def section_to_dict(section: "Section") -> dict:
    return {
        "id": section.id,
        "chapter_id": section.chapter_id,
        "title": section.title,
        "description": section.description,
        "video_url": section.video_url,
        "position": section.position,
        "is_published": section.is_published,
        "is_preview": section.is_preview,
    }


def chapter_to_dict(chapter: "Chapter", *, published_only: bool = False) -> dict:
    sections = [sec for sec in chapter.sections if sec.is_published or not published_only]
    return {
        "id": chapter.id,
        "course_id": chapter.course_id,
        "title": chapter.title,
        "description": chapter.description,
        "learning_outcomes": chapter.learning_outcomes,
        "position": chapter.position,
        "is_published": chapter.is_published,
        "is_free": chapter.is_free,
        "sections": [section_to_dict(sec) for sec in sections],
    }


def rating_summary(course: "Course") -> tuple[float | None, int]:
    ratings = [r.rating for r in course.reviews]
    if not ratings:
        return None, 0
    return round(sum(ratings) / len(ratings), 2), len(ratings)


def course_to_dict(course: "Course", *, detail: bool = False, published_only: bool = False) -> dict:
    average, count = rating_summary(course)
    out = {
        "id": course.id,
        "user_id": course.user_id,
        "title": course.title,
        "description": course.description,
        "image_url": course.image_url,
        "price": _price(course.price),
        "is_free": course.is_free,
        "category": course.category.to_dict() if course.category else None,
        "category_id": course.category_id,
        "is_published": course.is_published,
        "what_you_will_learn": list(course.what_you_will_learn or []),
        "chapter_count": len([c for c in course.chapters if c.is_published or not published_only]),
        "average_rating": average,
        "review_count": count,
        "created_at": iso(course.created_at),
        "updated_at": iso(course.updated_at),
    }
    if detail:
        chapters = [c for c in course.chapters if c.is_published or not published_only]
        out["chapters"] = [chapter_to_dict(c, published_only=published_only) for c in chapters]
        out["attachments"] = [a.to_dict() for a in course.attachments]
        out["owner"] = course.user.summary() if course.user else None
    return out


# ---------- Lookup ----------
def get_owned_course(s: "Session", course_id: int, user: "User") -> "Course":
    from app.bdgenai.modules.courses.models import Course

    course = s.query(Course).filter(Course.id == course_id, Course.user_id == user.id).one_or_none()
    if not course:
        raise NotFound("Course not found")
    return course


def get_owned_chapter(s: "Session", course: "Course", chapter_id: int) -> "Chapter":
    from app.bdgenai.modules.courses.models import Chapter

    chapter = s.query(Chapter).filter(Chapter.id == chapter_id, Chapter.course_id == course.id).one_or_none()
    if not chapter:
        raise NotFound("Chapter not found")
    return chapter


def get_owned_section(s: "Session", chapter: "Chapter", section_id: int) -> "Section":
    from app.bdgenai.modules.courses.models import Section

    section = s.query(Section).filter(Section.id == section_id, Section.chapter_id == chapter.id).one_or_none()
    if not section:
        raise NotFound("Section not found")
    return section


# ---------- Categories ----------
def category_name_from_slug(slug: str) -> str:
    """'web-development' -> 'Web Development'."""
    return " ".join(part.capitalize() for part in slug.strip().split("-") if part)


def find_category_by_name(s: "Session", name: str) -> "Category | None":
    from app.bdgenai.modules.courses.models import Category

    return s.query(Category).filter(func.lower(Category.name) == name.strip().lower()).one_or_none()


def resolve_category(s: "Session", raw: Any) -> "Category | None":
    """
    Accept a category id, or a slug for a category that may not exist yet.
    Lookup order: id, case-insensitive name built from the slug, create.
    """
    from app.bdgenai.modules.courses.models import Category

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    if isinstance(raw, int) or (isinstance(raw, str) and raw.strip().isdigit()):
        found = s.get(Category, int(raw))
        if found:
            return found
    name = category_name_from_slug(str(raw))
    if not name:
        return None
    found = find_category_by_name(s, name)
    if found:
        return found
    created = Category(name=name)
    s.add(created)
    s.flush()
    return created


def get_or_create_category(s: "Session", name: str) -> tuple["Category", bool]:
    from app.bdgenai.modules.courses.models import Category

    existing = find_category_by_name(s, name)
    if existing:
        return existing, False
    category = Category(name=name.strip())
    s.add(category)
    s.flush()
    return category, True


# ---------- Courses ----------
def create_course(s: "Session", payload: dict, user: "User") -> "Course":
    from app.bdgenai.modules.courses.models import Course

    now = datetime.utcnow()
    course = Course(
        user_id=user.id,
        title=text_value(payload.get("title")),
        what_you_will_learn=[],
        created_at=now,
        updated_at=now,
    )
    s.add(course)
    s.flush()
    record_event(s, actor=user, action="course.create", entity_type="Course", entity_id=course.id, metadata={"title": course.title})
    return course


def validate_course_update(payload: dict) -> list[str]:
    errors = []
    if not any(k in payload for k in COURSE_FIELDS):
        errors.append("No fields to update")
        return errors
    if "title" in payload and not text_value(payload.get("title")):
        errors.append("Title is required")
    if "price" in payload:
        try:
            price = parse_decimal(payload.get("price"))
        except ValueError:
            errors.append("Price must be a number")
        else:
            if price is not None and price < 0:
                errors.append("Price must not be negative")
    if "what_you_will_learn" in payload:
        value = payload.get("what_you_will_learn")
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            errors.append("what_you_will_learn must be a list of strings")
    if "category_id" in payload:
        raw = payload.get("category_id")
        if raw is not None and (isinstance(raw, bool) or not isinstance(raw, (int, str))):
            errors.append("Invalid category")
    return errors


def update_course(s: "Session", course: "Course", payload: dict, user: "User") -> "Course":
    """Apply only the keys present in payload."""
    changes: dict[str, Any] = {}

    if "title" in payload:
        course.title = payload["title"].strip()
        changes["title"] = course.title
    if "description" in payload:
        course.description = clean_str(payload.get("description"))
        changes["description"] = True
    if "image_url" in payload:
        course.image_url = clean_str(payload.get("image_url"))
        changes["image_url"] = course.image_url
    if "price" in payload:
        course.price = parse_decimal(payload.get("price"))
        changes["price"] = str(course.price) if course.price is not None else None
    if "what_you_will_learn" in payload:
        course.what_you_will_learn = [v.strip() for v in payload["what_you_will_learn"] if v.strip()]
        changes["what_you_will_learn"] = len(course.what_you_will_learn)
    if "category_id" in payload:
        category = resolve_category(s, payload.get("category_id"))
        course.category_id = category.id if category else None
        course.category = category
        changes["category_id"] = course.category_id
    if "is_published" in payload:
        course.is_published = bool(payload.get("is_published"))
        changes["is_published"] = course.is_published

    course.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="course.edit", entity_type="Course", entity_id=course.id, metadata={"changes": changes})
    return course


def delete_course(s: "Session", course: "Course", user: "User") -> None:
    record_event(s, actor=user, action="course.delete", entity_type="Course", entity_id=course.id, metadata={"title": course.title})
    s.delete(course)


# ---------- Publish readiness ----------
def readiness_flags(course: "Course") -> dict[str, bool]:
    return {
        "title_desc": bool(course.title and course.description),
        "learning_obj": bool(course.what_you_will_learn),
        "image": bool(course.image_url),
        "pricing": course.price is not None,
        "category": bool(course.category_id),
        "chapters": len(course.chapters) > 0,
        "attachments": len(course.attachments) > 0,
    }


def course_readiness(course: "Course") -> dict:
    flags = readiness_flags(course)
    completed = sum(1 for v in flags.values() if v)
    total = len(flags)
    return {
        "sections": flags,
        "completed": completed,
        "total": total,
        "completion_text": f"({completed}/{total})",
        "percentage": round(completed / total * 100),
        "is_publishable": completed >= MIN_FLAGS_TO_PUBLISH,
    }


def chapter_missing_fields(chapter: "Chapter") -> list[str]:
    return [f for f in ("title", "description", "learning_outcomes") if not getattr(chapter, f)]


def section_missing_fields(section: "Section") -> list[str]:
    return [f for f in ("title", "video_url") if not getattr(section, f)]


def set_course_published(s: "Session", course: "Course", published: bool, user: "User") -> "Course":
    course.is_published = published
    course.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="course.publish" if published else "course.unpublish",
        entity_type="Course",
        entity_id=course.id,
    )
    return course


# ---------- Learning objectives ----------
def objective_index(objective_id: str) -> int | None:
    """'objective-3' -> 3; None when the trailing part is not an integer."""
    tail = (objective_id or "").rsplit("-", 1)[-1]
    try:
        return int(tail)
    except ValueError:
        return None


def _objectives(course: "Course") -> list[str]:
    return list(course.what_you_will_learn or [])


def add_objective(s: "Session", course: "Course", value: str, user: "User") -> list[str]:
    items = _objectives(course)
    items.append(value.strip())
    course.what_you_will_learn = items
    course.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="course.objective_add", entity_type="Course", entity_id=course.id, metadata={"count": len(items)})
    return items


def update_objective(s: "Session", course: "Course", objective_id: str, value: str, user: "User") -> list[str]:
    items = _objectives(course)
    idx = objective_index(objective_id)
    if idx is None or not (0 <= idx < len(items)):
        raise NotFound("Objective not found")
    items[idx] = value.strip()
    course.what_you_will_learn = items
    course.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="course.objective_edit", entity_type="Course", entity_id=course.id, metadata={"index": idx})
    return items


def delete_objective(s: "Session", course: "Course", objective_id: str, user: "User") -> list[str]:
    items = _objectives(course)
    idx = objective_index(objective_id)
    if idx is None or not (0 <= idx < len(items)):
        raise NotFound("Objective not found")
    del items[idx]
    course.what_you_will_learn = items
    course.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="course.objective_delete", entity_type="Course", entity_id=course.id, metadata={"index": idx})
    return items


def reorder_objectives(s: "Session", course: "Course", from_index: int, to_index: int, user: "User") -> list[str]:
    items = splice_move(_objectives(course), from_index, to_index)
    course.what_you_will_learn = items
    course.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="course.objective_reorder",
        entity_type="Course",
        entity_id=course.id,
        metadata={"from": from_index, "to": to_index},
    )
    return items


# ---------- Chapters ----------
def create_chapter(s: "Session", course: "Course", title: str, user: "User") -> "Chapter":
    from app.bdgenai.modules.courses.models import Chapter

    last = s.query(func.max(Chapter.position)).filter(Chapter.course_id == course.id).scalar()
    chapter = Chapter(course_id=course.id, title=title.strip(), position=(last or 0) + 1)
    s.add(chapter)
    s.flush()
    record_event(s, actor=user, action="chapter.create", entity_type="Chapter", entity_id=chapter.id, metadata={"course_id": course.id})
    return chapter


def update_chapter(s: "Session", chapter: "Chapter", payload: dict, user: "User") -> "Chapter":
    if "title" in payload:
        chapter.title = text_value(payload.get("title"))
    if "description" in payload:
        chapter.description = clean_str(payload.get("description"))
    if "learning_outcomes" in payload:
        chapter.learning_outcomes = clean_str(payload.get("learning_outcomes"))
    if "is_free" in payload:
        chapter.is_free = bool(payload.get("is_free"))
    chapter.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="chapter.edit",
        entity_type="Chapter",
        entity_id=chapter.id,
        metadata={"fields": sorted(k for k in payload if k in CHAPTER_FIELDS)},
    )
    return chapter


def _unpublish_course_if_empty(s: "Session", course: "Course", user: "User") -> None:
    from app.bdgenai.modules.courses.models import Chapter

    remaining = (
        s.query(func.count(Chapter.id))
        .filter(Chapter.course_id == course.id, Chapter.is_published.is_(True))
        .scalar()
    )
    if not remaining and course.is_published:
        set_course_published(s, course, False, user)


def delete_chapter(s: "Session", course: "Course", chapter: "Chapter", user: "User") -> None:
    """Delete then close the gap: every later chapter moves up one position."""
    from app.bdgenai.modules.courses.models import Chapter

    deleted_position = chapter.position
    record_event(s, actor=user, action="chapter.delete", entity_type="Chapter", entity_id=chapter.id, metadata={"course_id": course.id})
    if chapter in course.chapters:
        course.chapters.remove(chapter)
    s.delete(chapter)
    s.flush()
    later = (
        s.query(Chapter)
        .filter(Chapter.course_id == course.id, Chapter.position > deleted_position)
        .order_by(Chapter.position.asc())
        .all()
    )
    for ch in later:
        ch.position = ch.position - 1
        s.flush()
    _unpublish_course_if_empty(s, course, user)


def validate_reorder_list(items: Any) -> list[str]:
    if not isinstance(items, list) or not items:
        return ["list is required"]
    for item in items:
        if not isinstance(item, dict) or "id" not in item or "position" not in item:
            return ["Each item needs id and position"]
        try:
            int(item["id"])
            int(item["position"])
        except (TypeError, ValueError):
            return ["id and position must be integers"]
    return []


def reorder_chapters(s: "Session", course: "Course", items: list[dict], user: "User") -> int:
    """One UPDATE per item; ids outside this course are ignored."""
    from app.bdgenai.modules.courses.models import Chapter

    updated = 0
    for item in items:
        updated += (
            s.query(Chapter)
            .filter(Chapter.id == int(item["id"]), Chapter.course_id == course.id)
            .update({Chapter.position: int(item["position"])}, synchronize_session=False)
        )
    record_event(s, actor=user, action="chapter.reorder", entity_type="Course", entity_id=course.id, metadata={"count": updated})
    return updated


def set_chapter_published(s: "Session", course: "Course", chapter: "Chapter", published: bool, user: "User") -> "Chapter":
    chapter.is_published = published
    chapter.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="chapter.publish" if published else "chapter.unpublish",
        entity_type="Chapter",
        entity_id=chapter.id,
    )
    if not published:
        s.flush()
        _unpublish_course_if_empty(s, course, user)
    return chapter


# ---------- Sections ----------
def create_section(s: "Session", chapter: "Chapter", title: str, user: "User") -> "Section":
    from app.bdgenai.modules.courses.models import Section

    last = s.query(func.max(Section.position)).filter(Section.chapter_id == chapter.id).scalar()
    section = Section(chapter_id=chapter.id, title=title.strip(), position=(last or 0) + 1)
    s.add(section)
    s.flush()
    record_event(s, actor=user, action="section.create", entity_type="Section", entity_id=section.id, metadata={"chapter_id": chapter.id})
    return section


def update_section(s: "Session", section: "Section", payload: dict, user: "User") -> "Section":
    if "title" in payload:
        section.title = text_value(payload.get("title"))
    if "description" in payload:
        section.description = clean_str(payload.get("description"))
    if "video_url" in payload:
        section.video_url = clean_str(payload.get("video_url"))
    if "is_preview" in payload:
        section.is_preview = bool(payload.get("is_preview"))
    section.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="section.edit",
        entity_type="Section",
        entity_id=section.id,
        metadata={"fields": sorted(k for k in payload if k in SECTION_FIELDS)},
    )
    return section


def delete_section(s: "Session", chapter: "Chapter", section: "Section", user: "User") -> None:
    from app.bdgenai.modules.courses.models import Section

    deleted_position = section.position
    record_event(s, actor=user, action="section.delete", entity_type="Section", entity_id=section.id, metadata={"chapter_id": chapter.id})
    if section in chapter.sections:
        chapter.sections.remove(section)
    s.delete(section)
    s.flush()
    later = (
        s.query(Section)
        .filter(Section.chapter_id == chapter.id, Section.position > deleted_position)
        .order_by(Section.position.asc())
        .all()
    )
    for sec in later:
        sec.position = sec.position - 1
        s.flush()


def reorder_sections(s: "Session", chapter: "Chapter", items: list[dict], user: "User") -> int:
    from app.bdgenai.modules.courses.models import Section

    updated = 0
    for item in items:
        updated += (
            s.query(Section)
            .filter(Section.id == int(item["id"]), Section.chapter_id == chapter.id)
            .update({Section.position: int(item["position"])}, synchronize_session=False)
        )
    record_event(s, actor=user, action="section.reorder", entity_type="Chapter", entity_id=chapter.id, metadata={"count": updated})
    return updated


def set_section_published(s: "Session", section: "Section", published: bool, user: "User") -> "Section":
    section.is_published = published
    section.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="section.publish" if published else "section.unpublish",
        entity_type="Section",
        entity_id=section.id,
    )
    return section


# ---------- Attachments ----------
def add_attachment(s: "Session", course: "Course", url: str, name: str | None, user: "User"):
    from app.bdgenai.modules.courses.models import Attachment

    url = url.strip()
    if not name:
        name = url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1] or "attachment"
    attachment = Attachment(course_id=course.id, url=url, name=name.strip())
    s.add(attachment)
    s.flush()
    record_event(s, actor=user, action="attachment.create", entity_type="Attachment", entity_id=attachment.id, metadata={"course_id": course.id})
    return attachment


# ---------- Reviews ----------
def upsert_review(s: "Session", course: "Course", rating: int, comment: str | None, user: "User") -> "CourseReview":
    from app.bdgenai.modules.courses.models import CourseReview

    review = (
        s.query(CourseReview)
        .filter(CourseReview.course_id == course.id, CourseReview.user_id == user.id)
        .one_or_none()
    )
    now = datetime.utcnow()
    if review:
        review.rating = rating
        review.comment = clean_str(comment)
        review.updated_at = now
    else:
        review = CourseReview(course_id=course.id, user_id=user.id, rating=rating, comment=clean_str(comment), created_at=now, updated_at=now)
        s.add(review)
    s.flush()
    record_event(s, actor=user, action="course.review", entity_type="Course", entity_id=course.id, metadata={"rating": rating})
    return review
