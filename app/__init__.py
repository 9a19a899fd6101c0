"""Subtopic video bridge application package."""
