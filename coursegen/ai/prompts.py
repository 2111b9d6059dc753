"""Prompt builders for each pipeline stage."""

from __future__ import annotations

import json
from typing import Any

from coursegen.jobs.models import GenerationParams
from coursegen.storage.content_repo import CourseRecord, LessonRecord, ModuleRecord, SectionRecord

JsonDict = dict[str, Any]

_JSON_ONLY = "Respond with a single JSON object and nothing else. Do not wrap it in markdown."


def _format_objectives(objectives: list[str]) -> str:
  """Format learning objectives as a prompt-friendly list."""
  if not objectives:
    return "-"
  return "\n".join(f"- {item}" for item in objectives)


def _request_block(params: GenerationParams) -> str:
  lines = [
    f"Title: {params.title}",
    f"Description: {params.description}",
    f"Difficulty: {params.difficulty}",
    f"Estimated hours: {params.estimated_hours:g}",
    "Learning objectives:",
    _format_objectives(params.learning_objectives),
  ]
  if params.requirements:
    lines.append(f"Additional requirements: {params.requirements}")
  return "\n".join(lines)


def _dump(payload: Any) -> str:
  """Serialize context deterministically so identical inputs give identical prompts."""
  return json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2)


def build_outline_prompt(params: GenerationParams) -> str:
  return "\n\n".join(
    [
      "You are designing an online course. Produce the course outline.",
      _request_block(params),
      'Schema: {"title": str, "summary": str, "prerequisites": [str], "modules": [{"title": str, "summary": str}]}',
      "Use between 2 and 12 modules that build on each other and fit the estimated hours.",
      _JSON_ONLY,
    ]
  )


def build_modules_prompt(params: GenerationParams, outline: JsonDict) -> str:
  return "\n\n".join(
    [
      "Expand every module of this course outline with concrete learning objectives.",
      _request_block(params),
      f"Outline:\n{_dump(outline)}",
      'Schema: {"modules": [{"title": str, "summary": str, "objectives": [str]}]}',
      "Return the modules in the outline's order, one entry per outline module.",
      _JSON_ONLY,
    ]
  )


def build_lessons_prompt(params: GenerationParams, course: CourseRecord, module: ModuleRecord, module_count: int) -> str:
  module_block = {"title": module.title, "summary": module.summary, "objectives": module.objectives, "position": f"{module.order_index + 1} of {module_count}"}
  return "\n\n".join(
    [
      "Plan the lessons of one course module.",
      _request_block(params),
      f"Course: {course.title}\n{course.summary}",
      f"Module:\n{_dump(module_block)}",
      'Schema: {"lessons": [{"title": str, "summary": str, "estimated_minutes": int}]}',
      "Cover every objective of the module across its lessons.",
      _JSON_ONLY,
    ]
  )


def build_sections_prompt(params: GenerationParams, course: CourseRecord, module: ModuleRecord, lesson: LessonRecord) -> str:
  lesson_block = {"module": module.title, "lesson": lesson.title, "summary": lesson.summary, "estimated_minutes": lesson.estimated_minutes}
  return "\n\n".join(
    [
      "Write the content sections of one lesson.",
      f"Course: {course.title} ({params.difficulty})",
      f"Lesson:\n{_dump(lesson_block)}",
      'Schema: {"sections": [{"title": str, "kind": "text" | "example" | "exercise" | "quiz", "body": str, "data": object | null}]}',
      "Start with explanatory text, include at least one worked example, and end with an exercise or quiz.",
      _JSON_ONLY,
    ]
  )


def build_thumbnail_prompt(course: CourseRecord, modules: list[ModuleRecord], lessons: list[LessonRecord], sections: list[SectionRecord]) -> str:
  tree = {
    "title": course.title,
    "summary": course.summary,
    "modules": [module.title for module in modules],
    "lesson_count": len(lessons),
    "section_count": len(sections),
  }
  return "\n\n".join(
    [
      "Describe a single illustration to use as this course's thumbnail image.",
      f"Course:\n{_dump(tree)}",
      'Schema: {"prompt": str}',
      "Keep the description under 80 words, with no text in the image.",
      _JSON_ONLY,
    ]
  )
