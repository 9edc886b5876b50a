"""Menu topics — what `menu` offers, grouped by difficulty."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Topic:
    key: str
    title: str
    commands: str
    description: str
    difficulty: str


TOPICS: list[Topic] = [
    Topic("1", "First Steps", "init, status", "initializing a repository and checking status", "beginner"),
    Topic("2", "Staging & Committing", "add, commit", "staging files and making commits", "beginner"),
    Topic("3", "Viewing History", "log, diff", "viewing commit history and differences", "beginner"),
    Topic("4", "Branching Basics", "branch, checkout", "creating and switching branches", "intermediate"),
    Topic("5", "Merging Changes", "merge", "merging branches and resolving conflicts", "intermediate"),
    Topic("6", "Working with Remotes", "remote, fetch, pull", "working with remote repositories", "intermediate"),
    Topic("7", "Rewriting History", "rebase, amend", "interactive rebase and amending commits", "advanced"),
    Topic("8", "Undoing Changes", "reset, revert", "undoing changes with reset and revert", "advanced"),
    Topic("9", "Stashing Work", "stash", "stashing work in progress", "advanced"),
]

DIFFICULTY_STYLES = {"beginner": "green", "intermediate": "yellow", "advanced": "red"}


def find_topic(choice: str) -> Topic | None:
    """Look up a topic by its menu number."""
    choice = choice.strip()
    return next((t for t in TOPICS if t.key == choice), None)
