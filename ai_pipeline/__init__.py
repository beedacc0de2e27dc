"""
AI Pipeline - propose, review, verify and merge code changes.

A content generator proposes file changes for a task, a reviewer judges
the resulting diff, and a verification gate runs the repository's lint and
test scripts. Each attempt happens on its own branch; rejected attempts feed
their findings into the next one until the task is done or the attempt
ceiling is reached.
"""

__version__ = "0.1.0"
