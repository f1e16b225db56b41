from __future__ import annotations

from collections import defaultdict

from .schemas import Course, CurriculumData, parse_hours


class CompletionEngine:
    """Completion, eligibility and progress derived from one CurriculumData snapshot.

    Eligibility treats every relation kind the same way: a co-requisite or a
    flexible prerequisite blocks a course exactly like a hard prerequisite.
    The kind only changes how the edge is drawn.
    """

    def __init__(self, data: CurriculumData):
        self.data = data
        self.courses = data.course_by_id()
        self.completed = set(data.completed_courses)
        self.incoming: dict[str, list] = defaultdict(list)
        self.outgoing: dict[str, list] = defaultdict(list)
        for p in data.prerequisites:
            self.incoming[p.to_id].append(p)
            self.outgoing[p.from_id].append(p)

    def is_completed(self, course_id: str) -> bool:
        return course_id in self.completed

    def is_eligible(self, course_id: str) -> bool:
        return all(p.from_id in self.completed for p in self.incoming.get(course_id, []))

    def missing_prerequisites(self, course_id: str) -> list[str]:
        return [p.from_id for p in self.incoming.get(course_id, []) if p.from_id not in self.completed]

    def eligible_courses(self) -> list[Course]:
        return [c for c in self.data.courses if c.id not in self.completed and self.is_eligible(c.id)]

    def completed_credit_percentage(self) -> float:
        total = sum(parse_hours(c.hours) for c in self.data.courses)
        if total == 0:
            return 0.0
        done = sum(parse_hours(c.hours) for c in self.data.courses if c.id in self.completed)
        return done / total * 100

    def ancestors(self, course_id: str) -> list[Course]:
        # Direct prerequisites only; ids missing from the catalog are skipped.
        return [self.courses[p.from_id] for p in self.incoming.get(course_id, []) if p.from_id in self.courses]

    def descendants(self, course_id: str) -> list[Course]:
        return [self.courses[p.to_id] for p in self.outgoing.get(course_id, []) if p.to_id in self.courses]

    def summary(self) -> dict:
        return {
            "courses": len(self.data.courses),
            "prerequisites": len(self.data.prerequisites),
            "completed": len(self.completed & set(self.courses)),
            "percentage": round(self.completed_credit_percentage(), 2),
        }
